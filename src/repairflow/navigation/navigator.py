"""Category-tree navigation for the labor catalog.

Walks a depth-bounded option tree one level at a time. At each level:

- no options: the tree is exhausted, move on to the leaf
- one option: select it (``auto-single``), no categorization call
- several options: ask the categorization service, resolve its answer
  through the matching chain and select the result

At the leaf the navigator picks the operational procedure, then probes
two optional sub-decisions (a single qualifier and a multi-select add-on
set), confirms, and reads back the billable hours.

The hours value is computed by the licensed catalog. It is reported as
read-only telemetry and never written back.

Unresolved levels and unconfirmed leaves come back as
``NavigationResult(success=False, error=...)``. With ``browser_retry`` set,
each catalog call is retried where it failed, so a stale session at level 3
resumes at level 3; errors that outlast the retries propagate.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from repairflow.backends.base import CatalogBrowser, CatalogScope, Categorizer
from repairflow.core.config import NavigatorConfig
from repairflow.core.constants import (
    LEAF_LEVEL_LABEL,
    LEVEL_LABELS,
    MAX_TREE_LEVELS,
    OPTION_PREVIEW_COUNT,
    QUALIFIER_LABEL,
    SETTLE_AFTER_CONFIRM_SECONDS,
    SETTLE_AFTER_SELECT_SECONDS,
)
from repairflow.core.errors import PlaybookError
from repairflow.core.logging import get_logger
from repairflow.execution.diagnostics import DiagnosticHook, capture
from repairflow.execution.retry import RetryContext, with_retry
from repairflow.navigation.matching import (
    MatchMethod,
    clean_answer,
    find_closest_match,
    parse_add_on_answer,
    resolve_many,
    resolve_option,
    strip_hours_suffix,
)
from repairflow.playbook.models import Diagnosis, Vehicle

_logger = get_logger("navigator")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

_HOURS_NUMBER = re.compile(r"\d+(?:\.\d+)?")


class ResolutionMethod(str, Enum):
    """How the choice at a level was made."""

    AUTO_SINGLE = "auto-single"
    MODEL_PICK = "model-pick"
    FUZZY_FALLBACK = "fuzzy-fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class NavigationDecision:
    """The option chosen at one level."""

    level: int
    label: str | None
    method: ResolutionMethod
    match: MatchMethod | None = None
    """Matching step that resolved a model answer, if one was needed."""

    answer: str | None = None
    """Raw categorization answer, if one was requested."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "label": self.label,
            "method": self.method.value,
            "match": self.match.value if self.match else None,
            "answer": self.answer,
        }


@dataclass(frozen=True)
class NavigationResult:
    """Outcome of one tree walk. Frozen: hours are read-only telemetry."""

    success: bool
    decisions: tuple[NavigationDecision, ...] = ()
    procedure: str | None = None
    hours: float | None = None
    qualifier: str | None = None
    add_ons: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "decisions": [d.to_dict() for d in self.decisions],
            "procedure": self.procedure,
            "hours": self.hours,
            "qualifier": self.qualifier,
            "add_ons": list(self.add_ons),
            "error": self.error,
        }


# =============================================================================
# Prompt building
# =============================================================================


def level_label(level: int) -> str:
    return LEVEL_LABELS.get(level, f"Level {level}")


def build_repair_context(vehicle: Vehicle, diagnosis: Diagnosis) -> str:
    """Compact description of the case sent with every categorization question."""
    line = f"Vehicle: {vehicle.year or ''} {vehicle.make or ''} {vehicle.model or ''}"
    line = " ".join(line.split())
    if vehicle.displacement:
        line += f" {vehicle.displacement}"
    if vehicle.drivetrain:
        line += f" {vehicle.drivetrain}"
    ctx = line + "\n"

    if diagnosis.codes:
        ctx += f"DTC codes: {', '.join(diagnosis.codes)}\n"
    if diagnosis.top_cause:
        ctx += f"Diagnosis: {diagnosis.top_cause}\n"
    if diagnosis.repair_description:
        ctx += f"Repair: {diagnosis.repair_description}\n"
    return ctx


def _numbered(options: Sequence[str]) -> str:
    return "\n".join(f"{i}. {o}" for i, o in enumerate(options, start=1))


def build_category_prompt(
    context: str,
    options: Sequence[str],
    label: str,
    parent: str | None = None,
) -> str:
    header = f"You are navigating a MOTOR labor catalog. Current level: {label}."
    if parent:
        header += f"\nParent category: {parent}"
    return (
        f"{header}\n\n{context}\n\nOptions:\n{_numbered(options)}\n\n"
        "Pick the ONE best option for this repair. "
        "Reply with ONLY the option text, nothing else."
    )


def build_add_on_prompt(context: str, add_ons: Sequence[str], procedure: str | None) -> str:
    return (
        "You are selecting add-ons for a MOTOR labor procedure.\n"
        f"Base procedure: {procedure or 'unknown'}\n\n{context}\n\n"
        f"Available add-ons:\n{_numbered(add_ons)}\n\n"
        "Which add-ons are applicable for this specific vehicle and repair? "
        "Reply with ONLY the add-on names (one per line). "
        'If none apply, reply "NONE".'
    )


def _preview(options: Sequence[str]) -> str:
    shown = ", ".join(options[:OPTION_PREVIEW_COUNT])
    return shown + ("..." if len(options) > OPTION_PREVIEW_COUNT else "")


def _parse_hours(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _HOURS_NUMBER.search(str(raw))
    return float(match.group()) if match else None


def _procedure_names(options: Sequence[str]) -> list[str]:
    """Procedure labels without their hours suffix, unless that makes two collide.

    Colliding labels keep their full text so every name maps to one row.
    """
    stripped = [strip_hours_suffix(o) for o in options]
    return [
        name if stripped.count(name) == 1 else option
        for name, option in zip(stripped, options, strict=True)
    ]


def _dedupe(labels: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique = []
    for label in labels:
        if label not in seen:
            seen.add(label)
            unique.append(label)
    return unique


# =============================================================================
# Navigator
# =============================================================================


class CategoryTreeNavigator:
    """Drive a labor catalog from its root to a confirmed leaf procedure."""

    def __init__(
        self,
        browser: CatalogBrowser,
        categorizer: Categorizer,
        *,
        max_levels: int = MAX_TREE_LEVELS,
        settle_seconds: float = SETTLE_AFTER_SELECT_SECONDS,
        confirm_settle_seconds: float = SETTLE_AFTER_CONFIRM_SECONDS,
        probe_qualifier: bool = True,
        probe_add_ons: bool = True,
        categorizer_retry: RetryContext | None = None,
        browser_retry: RetryContext | None = None,
        diagnostics: DiagnosticHook | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if not 1 <= max_levels <= MAX_TREE_LEVELS:
            raise ValueError(f"max_levels must be 1-{MAX_TREE_LEVELS}, got {max_levels}")
        self.browser = browser
        self.categorizer = categorizer
        self.max_levels = max_levels
        self.settle_seconds = settle_seconds
        self.confirm_settle_seconds = confirm_settle_seconds
        self.probe_qualifier = probe_qualifier
        self.probe_add_ons = probe_add_ons
        self.categorizer_retry = categorizer_retry
        self.browser_retry = browser_retry
        self.diagnostics = diagnostics
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        browser: CatalogBrowser,
        categorizer: Categorizer,
        config: NavigatorConfig,
        **kwargs: Any,
    ) -> CategoryTreeNavigator:
        return cls(
            browser,
            categorizer,
            max_levels=config.max_levels,
            settle_seconds=config.settle_seconds,
            probe_qualifier=config.probe_qualifier,
            probe_add_ons=config.probe_add_ons,
            **kwargs,
        )

    async def navigate(self, context: str, fallback_hint: str | None = None) -> NavigationResult:
        """Walk the tree for the case described by ``context``.

        Args:
            context: Repair context from ``build_repair_context``.
            fallback_hint: Text matched against the procedure list when the
                categorization service gives no answer there (usually the
                repair description).

        Returns:
            NavigationResult; ``success`` is False with ``error`` set when a
            level could not be resolved or the leaf could not be confirmed.
        """
        decisions: list[NavigationDecision] = []
        parent: str | None = None
        previous: set[str] = set()

        for level in range(1, self.max_levels + 1):
            visible = await self._list_labels(CatalogScope.TREE)
            options = [o for o in visible if o not in previous]
            if not options:
                break
            previous = set(visible)

            label = level_label(level)
            decision = await self._decide(
                CatalogScope.TREE, level, label, options, context, parent
            )
            decisions.append(decision)
            if decision.method is ResolutionMethod.FAILED:
                return await self._fail(
                    decisions,
                    f"Could not resolve {label} at level {level} from: {_preview(options)}",
                    options=options,
                )
            parent = decision.label
            await self._sleep(self.settle_seconds)

        procedure = parent
        procedures = await self._list_labels(CatalogScope.PROCEDURE)
        if procedures:
            decision = await self._decide(
                CatalogScope.PROCEDURE,
                len(decisions) + 1,
                LEAF_LEVEL_LABEL,
                procedures,
                context,
                parent,
                fallback_hint=fallback_hint,
            )
            decisions.append(decision)
            if decision.method is ResolutionMethod.FAILED or decision.label is None:
                return await self._fail(
                    decisions,
                    f"Could not pick an {LEAF_LEVEL_LABEL} from: {_preview(procedures)}",
                    options=procedures,
                )
            procedure = strip_hours_suffix(decision.label)
            await self._sleep(self.settle_seconds)

        qualifier = await self._probe_qualifier(context, procedure) if self.probe_qualifier else None
        add_ons = await self._probe_add_ons(context, procedure) if self.probe_add_ons else []

        if not await self._browse(self.browser.can_confirm, "catalog.can_confirm"):
            return await self._fail(
                decisions,
                f"No confirmable leaf reached after {len(decisions)} level(s)",
            )
        if not await self._browse(self.browser.confirm, "catalog.confirm"):
            return await self._fail(decisions, f'Could not confirm "{procedure}"')
        await self._sleep(self.confirm_settle_seconds)

        raw_hours = await self._browse(
            lambda: self.browser.read_value(CatalogScope.HOURS), "catalog.read_value"
        )
        hours = _parse_hours(raw_hours)
        _logger.info(
            "navigator.leaf_confirmed",
            procedure=procedure,
            hours=hours,
            levels=len(decisions),
            qualifier=qualifier,
            add_ons=add_ons,
        )
        return NavigationResult(
            success=True,
            decisions=tuple(decisions),
            procedure=procedure,
            hours=hours,
            qualifier=qualifier,
            add_ons=tuple(add_ons),
        )

    # =========================================================================
    # Level resolution
    # =========================================================================

    async def _decide(
        self,
        scope: CatalogScope,
        level: int,
        label: str,
        options: list[str],
        context: str,
        parent: str | None,
        fallback_hint: str | None = None,
    ) -> NavigationDecision:
        """Choose and select one of ``options`` in ``scope``."""
        if len(options) == 1:
            only = options[0]
            if not await self._select(scope, only):
                return NavigationDecision(level, only, ResolutionMethod.FAILED)
            _logger.info(
                "navigator.level_resolved",
                tree_level=level,
                level_label=label,
                label=only,
                method=ResolutionMethod.AUTO_SINGLE.value,
            )
            return NavigationDecision(level, only, ResolutionMethod.AUTO_SINGLE)

        # Procedure labels may carry an "(1.2h, $150)" annotation; match on names.
        names = _procedure_names(options) if scope is CatalogScope.PROCEDURE else options
        by_name = dict(zip(names, options, strict=True))

        answer = await self._ask(build_category_prompt(context, options, label, parent))
        if answer is None:
            closest = find_closest_match(fallback_hint, names) if fallback_hint else None
            if closest is None:
                return NavigationDecision(level, None, ResolutionMethod.FAILED)
            return await self._select_resolved(
                scope, level, label, by_name[closest], ResolutionMethod.FUZZY_FALLBACK,
                MatchMethod.TOKEN_OVERLAP, None,
            )

        cleaned = clean_answer(answer)
        resolved: tuple[str, MatchMethod] | None
        if cleaned in by_name:
            resolved = (cleaned, MatchMethod.EXACT)
        else:
            if scope is CatalogScope.PROCEDURE:
                cleaned = strip_hours_suffix(cleaned)
            resolved = resolve_option(cleaned, names)
        if resolved is None:
            return NavigationDecision(level, None, ResolutionMethod.FAILED, answer=answer)

        name, match = resolved
        method = (
            ResolutionMethod.FUZZY_FALLBACK
            if match is MatchMethod.TOKEN_OVERLAP
            else ResolutionMethod.MODEL_PICK
        )
        decision = await self._select_resolved(
            scope, level, label, by_name[name], method, match, answer
        )
        if decision.method is not ResolutionMethod.FAILED:
            return decision

        # Selection failed; retry once with the closest other option.
        fuzzy = find_closest_match(cleaned, [n for n in names if n != name])
        if fuzzy is None:
            return decision
        _logger.info("navigator.fuzzy_fallback", tree_level=level, answer=cleaned, label=fuzzy)
        return await self._select_resolved(
            scope, level, label, by_name[fuzzy], ResolutionMethod.FUZZY_FALLBACK,
            MatchMethod.TOKEN_OVERLAP, answer,
        )

    async def _select_resolved(
        self,
        scope: CatalogScope,
        level: int,
        label: str,
        option: str,
        method: ResolutionMethod,
        match: MatchMethod | None,
        answer: str | None,
    ) -> NavigationDecision:
        if not await self._select(scope, option):
            _logger.warning("navigator.select_failed", tree_level=level, label=option)
            return NavigationDecision(level, option, ResolutionMethod.FAILED, match, answer)
        _logger.info(
            "navigator.level_resolved",
            tree_level=level,
            level_label=label,
            label=option,
            method=method.value,
            match=match.value if match else None,
        )
        return NavigationDecision(level, option, method, match, answer)

    async def _browse(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Run one catalog call, retried in place when ``browser_retry`` is set."""
        if self.browser_retry is None:
            return await operation()
        return await with_retry(operation, self.browser_retry, name=name, sleep=self._sleep)

    async def _list_labels(self, scope: CatalogScope) -> list[str]:
        options = await self._browse(
            lambda: self.browser.list_options(scope), "catalog.list_options"
        )
        return _dedupe([o.label for o in options])

    async def _select(self, scope: CatalogScope, label: str) -> bool:
        return await self._browse(lambda: self.browser.select(scope, label), "catalog.select")

    async def _ask(self, prompt: str) -> str | None:
        """Query the categorizer; failures and empty answers mean no decision."""
        try:
            if self.categorizer_retry is not None:
                answer = await with_retry(
                    lambda: self.categorizer.ask(prompt),
                    self.categorizer_retry,
                    name="categorizer.ask",
                    sleep=self._sleep,
                )
            else:
                answer = await self.categorizer.ask(prompt)
        except PlaybookError as e:
            _logger.warning("navigator.categorizer_failed", error=str(e))
            return None
        if answer is None or not answer.strip():
            return None
        return answer

    # =========================================================================
    # Leaf probes
    # =========================================================================

    async def _probe_qualifier(self, context: str, procedure: str | None) -> str | None:
        options = await self._list_labels(CatalogScope.QUALIFIER)
        if not options:
            return None
        decision = await self._decide(
            CatalogScope.QUALIFIER, 0, QUALIFIER_LABEL, options, context, procedure
        )
        if decision.method is ResolutionMethod.FAILED:
            _logger.info("navigator.qualifier_skipped", options=_preview(options))
            return None
        await self._sleep(self.settle_seconds)
        return decision.label

    async def _probe_add_ons(self, context: str, procedure: str | None) -> list[str]:
        options = await self._list_labels(CatalogScope.ADD_ON)
        if not options:
            return []
        answer = await self._ask(build_add_on_prompt(context, options, procedure))
        picks = resolve_many(parse_add_on_answer(answer), options)

        selected = []
        for pick in picks:
            if await self._select(CatalogScope.ADD_ON, pick):
                selected.append(pick)
            else:
                _logger.warning("navigator.add_on_select_failed", label=pick)
        if selected:
            _logger.info("navigator.add_ons_selected", add_ons=selected)
        return selected

    async def _fail(
        self,
        decisions: list[NavigationDecision],
        error: str,
        options: Sequence[str] = (),
    ) -> NavigationResult:
        _logger.warning("navigator.failed", error=error, levels=len(decisions))
        await capture(
            self.diagnostics,
            "navigator.failed",
            error=error,
            options=list(options),
            decisions=[d.to_dict() for d in decisions],
        )
        return NavigationResult(success=False, decisions=tuple(decisions), error=error)


__all__ = [
    "CategoryTreeNavigator",
    "NavigationDecision",
    "NavigationResult",
    "ResolutionMethod",
    "build_add_on_prompt",
    "build_category_prompt",
    "build_repair_context",
    "level_label",
]
