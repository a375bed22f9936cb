"""Phase sequencer for estimate runs.

Executes the phase table strictly in order against one exclusively owned
remote session:

    authenticate -> establish_context -> source_parts -> source_labor
        -> link_parts -> persist_export

Hard phases (authenticate, establish_context) abort the run when they fail.
Soft phases degrade to a warning and the run continues. A run that aborts
returns ``success=False`` with ``error`` and a ``partial_result`` snapshot;
a run that reaches the end returns ``success=True`` with every warning
collected along the way.

Example usage:
    playbook = EstimatePlaybook(
        shop=ShopApiClient.from_config(config.shop_api),
        workspace=workspace,
        catalog=catalog,
        categorizer=AnthropicCategorizer.from_config(config.categorizer),
        marketplace=marketplace,
        config=config,
    )
    result = await playbook.run(request, session)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from repairflow.backends.base import (
    CatalogBrowser,
    Categorizer,
    EstimateWorkspace,
    PartsMarketplace,
    ShopPlatform,
)
from repairflow.core.config import PlaybookConfig
from repairflow.core.errors import PlatformTimeoutError, classify
from repairflow.core.logging import RunContext, get_logger, with_context
from repairflow.execution.circuit_breaker import CircuitBreakerRegistry, get_shared_registry
from repairflow.execution.diagnostics import DiagnosticHook, capture
from repairflow.execution.progress import ProgressChannel
from repairflow.execution.retry import RetryContext
from repairflow.playbook.models import (
    HARD_PHASES,
    EstimateRequest,
    PhaseResult,
    PlaybookResult,
)
from repairflow.playbook.phases import (
    PHASES,
    PhaseContext,
    PhaseSpec,
    SessionRefresher,
    SleepFn,
)
from repairflow.session import Session

_logger = get_logger("playbook")

COMPLETED = "completed"
ABORTED = "aborted"


class EstimatePlaybook:
    """Top-level state machine turning one request into one estimate."""

    def __init__(
        self,
        shop: ShopPlatform,
        workspace: EstimateWorkspace,
        catalog: CatalogBrowser,
        categorizer: Categorizer,
        marketplace: PartsMarketplace | None = None,
        config: PlaybookConfig | None = None,
        *,
        registry: CircuitBreakerRegistry | None = None,
        progress: ProgressChannel | None = None,
        diagnostics: DiagnosticHook | None = None,
        session_refresher: SessionRefresher | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the playbook.

        Args:
            shop: Shop-workflow platform API.
            workspace: Remote browser session owned by this run.
            catalog: Labor catalog in the remote session.
            categorizer: Categorization service for ambiguous catalog levels.
            marketplace: Parts marketplace, or None when not configured.
            config: Run configuration; defaults apply when omitted.
            registry: Circuit breakers; the process-wide registry by default,
                so failures seen by one run inform the next.
            progress: Channel receiving phase names.
            diagnostics: Optional capture hook.
            session_refresher: Called when the session is about to expire.
            sleep: Awaitable sleep used for backoff and settle delays.
            clock: Wall clock in epoch seconds.
        """
        self.shop = shop
        self.workspace = workspace
        self.catalog = catalog
        self.categorizer = categorizer
        self.marketplace = marketplace
        self.config = config or PlaybookConfig()
        self.registry = registry or get_shared_registry()
        self.progress = progress or ProgressChannel()
        self.diagnostics = diagnostics
        self.session_refresher = session_refresher
        self._sleep = sleep
        self._clock = clock

    async def run(self, request: EstimateRequest, session: Session) -> PlaybookResult:
        """Execute every phase for ``request``.

        Never raises for phase failures; the outcome is in the returned
        result. The remote session is released on every path.
        """
        result = PlaybookResult()
        run_ctx = RunContext()
        ctx = PhaseContext(
            request=request,
            session=session,
            result=result,
            config=self.config,
            shop=self.shop,
            workspace=self.workspace,
            catalog=self.catalog,
            categorizer=self.categorizer,
            marketplace=self.marketplace,
            registry=self.registry,
            retry=RetryContext.from_config(self.config.retry),
            diagnostics=self.diagnostics,
            session_refresher=self.session_refresher,
            sleep=self._sleep,
            clock=self._clock,
        )

        with with_context(run_ctx):
            _logger.info(
                "playbook.started",
                vehicle=request.vehicle.describe(),
                parts_requested=len(request.parts),
            )
            try:
                for step in PHASES:
                    if not step.should_run(ctx):
                        _logger.info(
                            "playbook.phase_skipped",
                            phase=step.phase.value,
                            reason=step.skip_reason,
                        )
                        continue

                    await self.progress.publish(
                        step.phase.value,
                        run_id=run_ctx.run_id,
                        estimate_id=result.estimate_id,
                    )
                    if result.estimate_id is not None:
                        run_ctx = run_ctx.with_estimate(result.estimate_id)
                    with with_context(run_ctx.with_phase(step.phase.value)):
                        phase_result = await self._run_phase(step, ctx)

                    result.phases.append(phase_result)
                    result.warnings.extend(phase_result.warnings)

                    if not phase_result.success and step.phase in HARD_PHASES:
                        self._abort(result, phase_result)
                        await self.progress.publish(ABORTED, run_id=run_ctx.run_id)
                        return result

                result.success = True
                _logger.info(
                    "playbook.completed",
                    estimate_id=result.estimate_id,
                    ro_number=result.ro_number,
                    totals=result.totals.to_dict(),
                    warnings=result.warning_codes(),
                )
                await self.progress.publish(
                    COMPLETED, run_id=run_ctx.run_id, estimate_id=result.estimate_id
                )
                return result
            finally:
                await self._release()

    async def _run_phase(self, step: PhaseSpec, ctx: PhaseContext) -> PhaseResult:
        """Run one phase and convert an escaping error into a phase failure."""
        phase_result = PhaseResult(phase=step.phase, success=False)
        started = time.monotonic()
        try:
            await asyncio.wait_for(
                step.run(ctx, phase_result), timeout=self.config.phase_timeout_seconds
            )
        except TimeoutError:
            error = PlatformTimeoutError(
                f"Phase {step.phase.value} exceeded {self.config.phase_timeout_seconds}s"
            )
            self._record_failure(step, phase_result, error)
        except Exception as e:
            self._record_failure(step, phase_result, e)
        else:
            phase_result.success = True

        duration = round(time.monotonic() - started, 3)
        if phase_result.success:
            _logger.info(
                "playbook.phase_completed",
                phase=step.phase.value,
                duration_seconds=duration,
                warnings=[w.code for w in phase_result.warnings],
            )
        else:
            await capture(
                self.diagnostics,
                "playbook.phase_failed",
                phase=step.phase.value,
                error=phase_result.error,
                partial=ctx.result.to_dict(include_partial=False),
            )
        return phase_result

    def _record_failure(self, step: PhaseSpec, phase_result: PhaseResult, error: Exception) -> None:
        failure = classify(error)
        phase_result.error = str(error)
        hard = step.phase in HARD_PHASES
        _logger.warning(
            "playbook.phase_failed",
            phase=step.phase.value,
            failure_class=failure.value,
            hard=hard,
            error=str(error),
        )
        if not hard and step.failure_code is not None:
            phase_result.warn(step.failure_code, f"{step.phase.value} failed: {error}")

    def _abort(self, result: PlaybookResult, failed: PhaseResult) -> None:
        result.success = False
        result.error = failed.error or f"{failed.phase.value} failed"
        result.partial_result = result.to_dict(include_partial=False)
        _logger.error(
            "playbook.aborted",
            phase=failed.phase.value,
            error=result.error,
            estimate_id=result.estimate_id,
        )

    async def _release(self) -> None:
        try:
            await self.workspace.release()
        except Exception:
            _logger.warning("playbook.release_failed", exc_info=True)


__all__ = ["ABORTED", "COMPLETED", "EstimatePlaybook"]
