"""Phase implementations for the estimate playbook.

Each phase is an async function ``(ctx, phase_result) -> None``. It mutates
``ctx.result`` additively and records non-fatal issues on ``phase_result``.
An exception escaping a phase is the phase failing; the sequencer decides
whether that aborts the run (hard phase) or becomes a warning (soft phase).

Remote calls go through ``PhaseContext.guarded``: the circuit breaker for
the dependency wraps the retry policy, which wraps the call. The labor
phase is the exception: its breaker wraps the whole tree walk and the
navigator retries each catalog call itself.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from repairflow.backends.base import (
    CatalogBrowser,
    Categorizer,
    EstimateWorkspace,
    PartsMarketplace,
    ShopPlatform,
)
from repairflow.core.config import PlaybookConfig
from repairflow.core.errors import AuthenticationError, PlaybookError, ResponseParseError
from repairflow.core.logging import get_logger
from repairflow.execution.circuit_breaker import CircuitBreakerRegistry
from repairflow.execution.diagnostics import DiagnosticHook
from repairflow.execution.retry import RetryContext, with_retry
from repairflow.navigation.navigator import (
    CategoryTreeNavigator,
    NavigationResult,
    build_repair_context,
)
from repairflow.playbook.models import (
    EstimateRequest,
    Phase,
    PhaseResult,
    PlaybookResult,
    Totals,
    Vehicle,
    WarningCode,
)
from repairflow.session import Session
from repairflow.sourcing.selector import pick_best

_logger = get_logger("playbook.phases")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
SessionRefresher = Callable[[], Awaitable[Session]]

# Circuit breaker names, one per external dependency
SHOP_API = "shop_api"
ESTIMATE_WORKSPACE = "estimate_workspace"
PARTS_MARKETPLACE = "parts_marketplace"
LABOR_CATALOG = "labor_catalog"
CATEGORIZER = "categorizer"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-]")


@dataclass
class PhaseContext:
    """Everything a phase needs: the request, collaborators and run state."""

    request: EstimateRequest
    session: Session
    result: PlaybookResult
    config: PlaybookConfig
    shop: ShopPlatform
    workspace: EstimateWorkspace
    catalog: CatalogBrowser
    categorizer: Categorizer
    marketplace: PartsMarketplace | None
    registry: CircuitBreakerRegistry
    retry: RetryContext
    diagnostics: DiagnosticHook | None = None
    session_refresher: SessionRefresher | None = None
    sleep: SleepFn = asyncio.sleep
    clock: Callable[[], float] = time.time
    labor_succeeded: bool = field(default=False)

    async def guarded(
        self,
        dependency: str,
        operation: Callable[[], Awaitable[T]],
        name: str,
    ) -> T:
        """Run ``operation`` under the dependency's breaker and the retry policy."""

        async def attempt() -> T:
            return await with_retry(operation, self.retry, name=name, sleep=self.sleep)

        if not self.config.circuit_breaker.enabled:
            return await attempt()
        return await self.registry.call(dependency, attempt)


class GuardedCategorizer(Categorizer):
    """Routes categorization calls through the categorizer's circuit breaker.

    Each question is retried inside the breaker, so one question that
    exhausts its retries counts as a single breaker failure. An open circuit
    surfaces as ``CircuitOpenError``, which the navigator treats as
    "no decision".
    """

    def __init__(
        self,
        inner: Categorizer,
        registry: CircuitBreakerRegistry,
        retry: RetryContext | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.registry = registry
        self.retry = retry
        self._sleep = sleep

    async def ask(self, prompt: str) -> str | None:
        async def attempt() -> str | None:
            if self.retry is None:
                return await self.inner.ask(prompt)
            return await with_retry(
                lambda: self.inner.ask(prompt),
                self.retry,
                name="categorizer.ask",
                sleep=self._sleep,
            )

        return await self.registry.call(CATEGORIZER, attempt)


# =============================================================================
# Helpers
# =============================================================================


def match_vehicle(vehicles: Sequence[dict[str, Any]], vehicle: Vehicle) -> str | None:
    """Pick the existing customer vehicle that corresponds to ``vehicle``.

    VIN match first, then year and make both appearing in the vehicle name,
    then the first vehicle on file.
    """
    if not vehicles or not vehicle.is_identified:
        return None

    def vehicle_id(v: dict[str, Any]) -> str | None:
        return v.get("vehicleId") or v.get("_id")

    if vehicle.vin:
        for v in vehicles:
            if vehicle.vin in (v.get("VIN"), v.get("vin")):
                return vehicle_id(v)

    if vehicle.year or vehicle.make:
        for v in vehicles:
            name = str(v.get("name") or "").lower()
            year_ok = not vehicle.year or str(vehicle.year) in name
            make_ok = not vehicle.make or vehicle.make.lower() in name
            if year_ok and make_ok:
                return vehicle_id(v)

    return vehicle_id(vehicles[0])


def artifact_filename(vehicle: Vehicle, now: float) -> str:
    """``estimate-<year>-<make>-<model>-<epoch ms>.pdf`` with unsafe characters removed."""
    raw = f"{vehicle.year or ''}-{vehicle.make or ''}-{vehicle.model or ''}"
    return f"estimate-{_UNSAFE_NAME_CHARS.sub('', raw)}-{int(now * 1000)}.pdf"


def local_totals(result: PlaybookResult, labor_rate: float) -> Totals:
    """Totals summed from the line items this run produced."""
    labor = round((result.labor_hours or 0.0) * labor_rate, 2)
    parts = round(sum(p.price or 0.0 for p in result.parts_added), 2)
    return Totals(labor=labor, parts=parts, grand=round(labor + parts, 2), source="local")


def remote_totals(remote: dict[str, Any], fallback: Totals) -> Totals:
    """Merge remote totals over ``fallback``; the remote values win."""

    def amount(key: str, default: float) -> float:
        value = remote.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return round(float(value), 2)

    labor = amount("labor", fallback.labor)
    parts = amount("parts", fallback.parts)
    grand = amount("grand", round(labor + parts, 2))
    return Totals(labor=labor, parts=parts, grand=grand, source="remote")


# =============================================================================
# Phases
# =============================================================================


async def authenticate(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Validate the session and attach to the remote browser session."""
    if ctx.session.is_expired(now=ctx.clock()):
        if ctx.session_refresher is None:
            raise AuthenticationError("Session expired and no refresher is configured")
        _logger.info("playbook.session_refresh")
        ctx.session = await ctx.session_refresher()

    session = ctx.session
    await ctx.guarded(SHOP_API, lambda: ctx.shop.authenticate(session), "shop.authenticate")
    await ctx.guarded(
        ESTIMATE_WORKSPACE, lambda: ctx.workspace.attach(session), "workspace.attach"
    )
    phase.data["session_expires_at"] = session.expires_at


async def establish_context(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Find or create the customer and vehicle, then create and open the estimate."""
    customer = ctx.request.customer
    vehicle = ctx.request.vehicle
    result = ctx.result
    first_name, last_name = customer.split_name()

    existing: dict[str, Any] | None = None
    if customer.phone:
        phone = customer.phone
        existing = await ctx.guarded(
            SHOP_API, lambda: ctx.shop.search_customer(phone), "shop.search_customer"
        )

    if existing and existing.get("_id"):
        result.customer_id = str(existing["_id"])
        phase.data["customer_source"] = "existing"
    else:
        existing = None
        created = await ctx.guarded(
            SHOP_API,
            lambda: ctx.shop.create_customer(first_name, last_name, customer.phone, customer.email),
            "shop.create_customer",
        )
        result.customer_id = str(created["_id"])
        phase.data["customer_source"] = "created"

    customer_id = result.customer_id
    vehicle_id = match_vehicle(existing.get("vehicles") or [], vehicle) if existing else None
    if vehicle_id:
        phase.data["vehicle_source"] = "existing"
    elif vehicle.is_identified:
        try:
            created_vehicle = await ctx.guarded(
                SHOP_API,
                lambda: ctx.shop.create_vehicle(customer_id, vehicle),
                "shop.create_vehicle",
            )
            vehicle_id = created_vehicle.get("vehicleId") or created_vehicle.get("_id")
            phase.data["vehicle_source"] = "created"
        except PlaybookError as e:
            phase.warn(WarningCode.VEHICLE_CREATE_FAILED, f"Vehicle creation failed: {e}")
    result.vehicle_id = str(vehicle_id) if vehicle_id else None

    estimate = await ctx.guarded(
        SHOP_API,
        lambda: ctx.shop.create_estimate(customer_id, result.vehicle_id),
        "shop.create_estimate",
    )
    if not estimate.get("_id"):
        raise ResponseParseError(f"Estimate response has no id: {estimate!r}")
    result.estimate_id = str(estimate["_id"])
    ro_number = estimate.get("code") or estimate.get("estimateNumber")
    result.ro_number = str(ro_number) if ro_number else None

    estimate_id = result.estimate_id
    await ctx.guarded(
        ESTIMATE_WORKSPACE,
        lambda: ctx.workspace.open_estimate(estimate_id),
        "workspace.open_estimate",
    )
    await ctx.sleep(ctx.config.settle_seconds)
    await _check_vehicle(ctx, phase)


async def _check_vehicle(ctx: PhaseContext, phase: PhaseResult) -> None:
    status = await ctx.guarded(
        ESTIMATE_WORKSPACE, ctx.workspace.vehicle_status, "workspace.vehicle_status"
    )
    phase.data["vehicle_visible"] = status.visible
    phase.data["vehicle_confirmed"] = status.confirmed
    if status.confirmed:
        return

    if not status.visible:
        phase.warn(WarningCode.VEHICLE_UNCONFIRMED, "Vehicle is not linked to the estimate")
        return

    message = "Vehicle is shown on the estimate but not confirmed by the platform"
    if ctx.config.vehicle_unconfirmed_policy == "fail":
        raise PlaybookError(message)
    phase.warn(WarningCode.VEHICLE_UNCONFIRMED, message)


async def source_parts(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Search each requested part and add the best candidate to the cart."""
    marketplace = ctx.marketplace
    opened = False
    if marketplace is not None:
        opened = await ctx.guarded(PARTS_MARKETPLACE, marketplace.open, "marketplace.open")
    if marketplace is None or not opened:
        phase.warn(WarningCode.PT_NO_TAB, "Parts marketplace did not open")
        return

    try:
        for part in ctx.request.parts:
            term = part.search_term
            if not term:
                phase.warn(WarningCode.PT_NO_SEARCH_TERM, "No search term for part")
                continue
            await _source_one(ctx, phase, marketplace, term)

        if ctx.result.parts_added:
            try:
                submitted = await ctx.guarded(
                    PARTS_MARKETPLACE, marketplace.submit_cart, "marketplace.submit_cart"
                )
            except PlaybookError as e:
                phase.warn(WarningCode.PT_SUBMIT_FAILED, f"Cart submit failed: {e}")
            else:
                if not submitted:
                    phase.warn(WarningCode.PT_SUBMIT_FAILED, "Cart was not accepted by the estimate")
    finally:
        try:
            await marketplace.close()
        except Exception:
            _logger.warning("playbook.marketplace_close_failed", exc_info=True)

    phase.data["parts_added"] = len(ctx.result.parts_added)


async def _source_one(
    ctx: PhaseContext, phase: PhaseResult, marketplace: PartsMarketplace, term: str
) -> None:
    try:
        candidates = await ctx.guarded(
            PARTS_MARKETPLACE, lambda: marketplace.search(term), "marketplace.search"
        )
    except PlaybookError as e:
        phase.warn(WarningCode.PT_PART_FAILED, f'Search for "{term}" failed: {e}')
        return

    best = pick_best(candidates)
    if best is None:
        phase.warn(WarningCode.PT_PART_FAILED, f'No priced candidate for "{term}"')
        return

    try:
        added = await ctx.guarded(
            PARTS_MARKETPLACE, lambda: marketplace.add_to_cart(best), "marketplace.add_to_cart"
        )
    except PlaybookError as e:
        phase.warn(WarningCode.PT_PART_FAILED, f'Adding "{term}" to cart failed: {e}')
        return
    if not added:
        phase.warn(WarningCode.PT_PART_FAILED, f'Could not add "{term}" to cart')
        return

    _logger.info(
        "playbook.part_added",
        search_term=term,
        brand=best.brand,
        price=best.price,
        in_stock=best.in_stock,
    )
    ctx.result.parts_added.append(best)


async def source_labor(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Navigate the labor catalog to a confirmed procedure.

    Retries happen per catalog call inside the navigator, so a transient
    error deep in the tree resumes at that level instead of restarting the
    walk. The labor catalog breaker wraps the whole walk.
    """
    breakers = ctx.config.circuit_breaker.enabled
    if breakers:
        categorizer: Categorizer = GuardedCategorizer(
            ctx.categorizer, ctx.registry, retry=ctx.retry, sleep=ctx.sleep
        )
        categorizer_retry = None
    else:
        categorizer = ctx.categorizer
        categorizer_retry = ctx.retry
    navigator = CategoryTreeNavigator.from_config(
        ctx.catalog,
        categorizer,
        ctx.config.navigator,
        categorizer_retry=categorizer_retry,
        browser_retry=ctx.retry,
        diagnostics=ctx.diagnostics,
        sleep=ctx.sleep,
    )
    request = ctx.request
    context = build_repair_context(request.vehicle, request.diagnosis)
    hint = request.diagnosis.repair_description or request.diagnosis.top_cause

    async def walk() -> NavigationResult:
        return await navigator.navigate(context, fallback_hint=hint)

    if breakers:
        outcome = await ctx.registry.call(LABOR_CATALOG, walk)
    else:
        outcome = await walk()
    ctx.result.labor = outcome
    if not outcome.success:
        phase.warn(WarningCode.MOTOR_FAILED, outcome.error or "Labor navigation failed")
        return

    ctx.labor_succeeded = True
    ctx.result.labor_hours = outcome.hours
    phase.data["procedure"] = outcome.procedure
    phase.data["hours"] = outcome.hours


async def link_parts(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Link added parts to the labor service, which triggers remote markup."""
    parts = list(ctx.result.parts_added)
    linked = await ctx.guarded(
        ESTIMATE_WORKSPACE, lambda: ctx.workspace.link_parts(parts), "workspace.link_parts"
    )
    phase.data["linked"] = linked
    if linked <= 0:
        phase.warn(
            WarningCode.LINK_FAILED, "Parts not linked to labor; shop markup may not apply"
        )


async def persist_export(ctx: PhaseContext, phase: PhaseResult) -> None:
    """Save, read authoritative totals and export the estimate document."""
    result = ctx.result
    labor_rate = ctx.config.labor_rate
    result.labor_rate = labor_rate

    totals = local_totals(result, labor_rate)
    result.totals = totals

    await ctx.guarded(ESTIMATE_WORKSPACE, ctx.workspace.save, "workspace.save")

    try:
        remote = await ctx.guarded(
            ESTIMATE_WORKSPACE, ctx.workspace.read_totals, "workspace.read_totals"
        )
    except PlaybookError as e:
        remote = None
        phase.warn(WarningCode.TOTALS_UNAVAILABLE, f"Could not read remote totals: {e}")
    else:
        if remote is None:
            phase.warn(
                WarningCode.TOTALS_UNAVAILABLE, "Remote totals unavailable; using local sums"
            )
    if remote:
        totals = remote_totals(remote, totals)
    result.totals = totals

    if result.estimate_id is None:
        phase.warn(WarningCode.PDF_FAILED, "No estimate to export")
        return
    estimate_id = result.estimate_id
    try:
        document = await ctx.guarded(
            SHOP_API, lambda: ctx.shop.export_document(estimate_id), "shop.export_document"
        )
        artifact_dir = Path(ctx.config.artifact_dir)
        artifact_dir.mkdir(parents=True, exist_ok=True)
        path = artifact_dir / artifact_filename(ctx.request.vehicle, ctx.clock())
        path.write_bytes(document)
    except (PlaybookError, OSError) as e:
        phase.warn(WarningCode.PDF_FAILED, f"Document export failed: {e}")
        return

    result.artifact_path = path
    phase.data["artifact_bytes"] = len(document)


# =============================================================================
# Phase table
# =============================================================================


@dataclass(frozen=True)
class PhaseSpec:
    """One row of the phase table."""

    phase: Phase
    run: Callable[[PhaseContext, PhaseResult], Awaitable[None]]
    failure_code: WarningCode | None
    """Warning recorded when a soft phase fails; None for hard phases."""

    should_run: Callable[[PhaseContext], bool] = lambda ctx: True
    skip_reason: str | None = None


PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(Phase.AUTHENTICATE, authenticate, failure_code=None),
    PhaseSpec(Phase.ESTABLISH_CONTEXT, establish_context, failure_code=None),
    PhaseSpec(
        Phase.SOURCE_PARTS,
        source_parts,
        failure_code=WarningCode.PT_PART_FAILED,
        should_run=lambda ctx: bool(ctx.request.parts),
        skip_reason="no parts requested",
    ),
    PhaseSpec(Phase.SOURCE_LABOR, source_labor, failure_code=WarningCode.MOTOR_FAILED),
    PhaseSpec(
        Phase.LINK_PARTS,
        link_parts,
        failure_code=WarningCode.LINK_FAILED,
        should_run=lambda ctx: bool(ctx.result.parts_added) and ctx.labor_succeeded,
        skip_reason="needs added parts and confirmed labor",
    ),
    PhaseSpec(Phase.PERSIST_EXPORT, persist_export, failure_code=WarningCode.SAVE_FAILED),
)


__all__ = [
    "CATEGORIZER",
    "ESTIMATE_WORKSPACE",
    "GuardedCategorizer",
    "LABOR_CATALOG",
    "PARTS_MARKETPLACE",
    "PHASES",
    "PhaseContext",
    "PhaseSpec",
    "SHOP_API",
    "artifact_filename",
    "local_totals",
    "match_vehicle",
    "remote_totals",
]
