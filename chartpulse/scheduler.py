"""
ChartPulse - Cycle Scheduler

Autonomous control loop: one cycle at a time, each cycle a capture step
followed by an analysis step, each step retried with a fixed delay. The
next wait comes from the verdict's ``nextCheckMinutes`` (clamped); failed
cycles wait a short recovery delay, and a run of consecutive failures
stops the loop. Configuration faults (FATAL_ERRORS) stop it at once.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed

from agents.pipeline import VisionPipeline
from chartpulse.capture.orchestrator import CaptureOrchestrator, outcomes_from_directory
from chartpulse.config import CaptureConfig, SchedulerConfig
from chartpulse.exceptions import EXIT_FATAL, FATAL_ERRORS, FatalStepError
from chartpulse.logging import cycle_context, get_scheduler_logger
from chartpulse.models import CycleRecord, TradingVerdict, utcnow
from chartpulse.storage.results import ResultStore, verdict_from_document

logger = get_scheduler_logger()

Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# Steps
# =============================================================================

@dataclass(frozen=True)
class StepResult:
    """Outcome of one step attempt: ``value`` when ok, ``error`` otherwise."""

    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> "StepResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "StepResult":
        return cls(ok=False, error=error)


class Step(Protocol):
    name: str

    async def run(self, cycle: int) -> StepResult: ...


class CaptureStep:
    """In-process multi-timeframe capture; ok when at least one screenshot exists."""

    name = "capture"

    def __init__(self, orchestrator: CaptureOrchestrator, timeframes: list[str] | None = None):
        self.orchestrator = orchestrator
        self.timeframes = timeframes

    async def run(self, cycle: int) -> StepResult:
        report = await self.orchestrator.capture_all(self.timeframes)
        if not report.success:
            return StepResult.failure(
                f"no timeframe captured ({', '.join(report.failed_timeframes)})"
            )
        return StepResult.success(report)


class AnalysisStep:
    """In-process vision pipeline over the screenshots on disk."""

    name = "analysis"

    def __init__(
        self,
        pipeline: VisionPipeline,
        capture_config: CaptureConfig,
        timeframes: list[str] | None = None,
    ):
        self.pipeline = pipeline
        self.capture_config = capture_config
        self.timeframes = timeframes

    async def run(self, cycle: int) -> StepResult:
        outcomes = outcomes_from_directory(self.capture_config, self.timeframes)
        # The structured result is where the next interval is read from
        result = await self.pipeline.run(outcomes, cycle=cycle, save_json=True)
        if not result.success:
            return StepResult.failure(result.error or "vision pipeline failed")
        return StepResult.success(result)


class SubprocessStep:
    """
    Runs ``python -m chartpulse <args>`` as an isolated process.

    ``{cycle}`` in any argument is replaced with the cycle number. The step
    is ok iff the process exits 0; its output is relayed to the log. Exit
    status ``EXIT_FATAL`` raises FatalStepError instead of being retried.
    """

    def __init__(self, name: str, args: list[str], python: str = sys.executable):
        self.name = name
        self.args = args
        self.python = python

    def command(self, cycle: int) -> list[str]:
        return [self.python, "-m", "chartpulse", *(a.replace("{cycle}", str(cycle)) for a in self.args)]

    async def run(self, cycle: int) -> StepResult:
        argv = self.command(cycle)
        logger.debug("subprocess_started", step=self.name, argv=argv)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        if proc.stdout is not None:
            async for raw in proc.stdout:
                line = raw.decode(errors="replace").rstrip()
                if line:
                    logger.info("step_output", step=self.name, line=line)
        code = await proc.wait()
        if code == EXIT_FATAL:
            raise FatalStepError(f"{self.name} process exited with fatal status {code}")
        if code != 0:
            return StepResult.failure(f"process exited with code {code}")
        return StepResult.success(code)


async def _attempt(step: Step, cycle: int) -> StepResult:
    try:
        return await step.run(cycle)
    except FATAL_ERRORS:
        raise
    except Exception as e:
        logger.error("step_error", step=step.name, error=str(e), error_type=type(e).__name__)
        return StepResult.failure(str(e) or type(e).__name__)


async def run_with_retry(
    step: Step,
    cycle: int,
    max_attempts: int,
    delay_seconds: float,
    sleep: Sleep = asyncio.sleep,
) -> StepResult:
    """
    Run a step until it succeeds or ``max_attempts`` is exhausted.

    Returns the last attempt's result. FATAL_ERRORS are not retried and
    propagate to the caller.
    """

    def log_retry(retry_state: RetryCallState) -> None:
        result: StepResult = retry_state.outcome.result()
        logger.warning(
            "step_attempt_failed",
            step=step.name,
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            error=result.error,
            retry_in_seconds=delay_seconds,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_result(lambda r: not r.ok),
        before_sleep=log_retry,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        sleep=sleep,
    )

    logger.info("step_started", step=step.name, cycle=cycle)
    result: StepResult = await retrying(_attempt, step, cycle)
    if result.ok:
        logger.info("step_succeeded", step=step.name, cycle=cycle)
    else:
        logger.error(
            "step_failed",
            step=step.name,
            cycle=cycle,
            attempts=max_attempts,
            error=result.error,
        )
    return result


# =============================================================================
# Interval extraction
# =============================================================================

def _next_check_value(source: Any) -> Any:
    if isinstance(source, CycleRecord):
        source = source.verdict
    if isinstance(source, TradingVerdict):
        return source.next_check_minutes
    if isinstance(source, dict):
        verdict = (source.get("analysisData") or {}).get("finalVerdict") or {}
        return verdict.get("nextCheckMinutes", source.get("nextCheckMinutes"))
    return source


def extract_next_check_interval(
    source: Any,
    default: int,
    minimum: int,
    maximum: int,
) -> int:
    """
    Minutes until the next cycle, clamped to [minimum, maximum].

    ``source`` may be a CycleRecord, TradingVerdict, persisted result
    document or a raw number. A missing or non-numeric value falls back
    to ``default``.
    """
    value = _next_check_value(source)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning("next_check_invalid", value=value, using_default=default)
        return max(minimum, min(maximum, default))

    recommended = round(value)
    bounded = max(minimum, min(maximum, recommended))
    if bounded != recommended:
        logger.warning(
            "next_check_clamped",
            recommended=recommended,
            bounded=bounded,
            minimum=minimum,
            maximum=maximum,
        )
    logger.info("next_check_interval", minutes=bounded, default=default)
    return bounded


# =============================================================================
# Scheduler
# =============================================================================

class CycleScheduler:
    """
    Runs cycles sequentially until stopped.

    The scheduler's only external state is the cycle log in the result
    store; cycle numbers continue from the last recorded cycle.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        steps: list[Step],
        store: ResultStore,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.steps = steps
        self.store = store
        self.sleep = sleep
        self.consecutive_failures = 0
        self.cycles_run = 0
        self._stop_requested = False

    # ─── Stop handling ────────────────────────────────────────────────────────

    def request_stop(self) -> None:
        if not self._stop_requested:
            logger.info("stop_requested")
        self._stop_requested = True

    def install_signal_handlers(self) -> None:
        """SIGINT/SIGTERM request a clean stop after the current wait slice."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda *_: self.request_stop())

    @property
    def stopped(self) -> bool:
        return self._stop_requested

    # ─── Waiting ──────────────────────────────────────────────────────────────

    async def wait_minutes(self, minutes: int) -> None:
        """Sleep in one-minute slices with a countdown log."""
        logger.info("waiting_for_next_cycle", minutes=minutes)
        for remaining in range(minutes, 0, -1):
            if self._stop_requested:
                return
            if remaining <= 5 or remaining % 5 == 0:
                logger.info("countdown", minutes_remaining=remaining)
            await self.sleep(60)

    # ─── Cycles ───────────────────────────────────────────────────────────────

    async def run_cycle(self, cycle: int) -> CycleRecord:
        """Run every step of one cycle and write its record."""
        with cycle_context(cycle):
            return await self._run_cycle(cycle)

    async def _run_cycle(self, cycle: int) -> CycleRecord:
        started_at = utcnow()
        start = time.time()
        logger.info("cycle_started", cycle=cycle)

        error: str | None = None
        for i, step in enumerate(self.steps):
            if i > 0:
                await self.sleep(self.config.step_pause_seconds)
            try:
                result = await run_with_retry(
                    step,
                    cycle,
                    self.config.max_attempts,
                    self.config.retry_delay_seconds,
                    sleep=self.sleep,
                )
            except FATAL_ERRORS as e:
                logger.error("step_fatal", step=step.name, cycle=cycle, error=str(e), error_type=type(e).__name__)
                self.store.append_cycle_record(
                    self._record(cycle, started_at, f"{step.name}: {e}")
                )
                raise
            if not result.ok:
                error = f"{step.name}: {result.error}"
                break

        record = self._record(cycle, started_at, error)
        self.store.append_cycle_record(record)

        logger.info(
            "cycle_complete" if record.success else "cycle_failed",
            cycle=cycle,
            success=record.success,
            error=record.error,
            verdict=record.verdict.action.value if record.verdict else None,
            cost_usd=record.cost_estimate,
            duration_s=round(time.time() - start, 1),
        )
        return record

    def _record(self, cycle: int, started_at: datetime, error: str | None) -> CycleRecord:
        verdict = None
        cost = 0.0
        if error is None:
            document = self.store.latest_result(cycle)
            verdict = verdict_from_document(document)
            cost = float(((document or {}).get("analysisData") or {}).get("totalCost") or 0.0)
            if verdict is None:
                logger.warning("cycle_verdict_missing", cycle=cycle)
        return CycleRecord(
            cycle_number=cycle,
            started_at=started_at,
            success=error is None,
            cost_estimate=cost,
            verdict=verdict,
            error=error,
        )

    def next_interval(self, record: CycleRecord) -> int:
        return extract_next_check_interval(
            record,
            self.config.default_interval_minutes,
            self.config.min_interval_minutes,
            self.config.max_interval_minutes,
        )

    async def run(self, once: bool = False) -> bool:
        """
        Run cycles until stopped, a single cycle when ``once``.

        Returns:
            False if the loop stopped on the failure threshold or a fatal
            error, or a single cycle failed; True otherwise
        """
        cycle = self.store.last_cycle_number() + 1
        logger.info(
            "scheduler_started",
            first_cycle=cycle,
            mode="once" if once else "continuous",
            default_interval_minutes=self.config.default_interval_minutes,
            max_attempts=self.config.max_attempts,
            max_consecutive_failures=self.config.max_consecutive_failures,
        )

        while not self._stop_requested:
            try:
                record = await self.run_cycle(cycle)
            except FATAL_ERRORS as e:
                self.cycles_run += 1
                logger.error(
                    "scheduler_stopped",
                    reason="fatal_error",
                    cycle=cycle,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return False
            self.cycles_run += 1

            if once:
                logger.info("scheduler_stopped", reason="single_cycle", success=record.success)
                return record.success

            if record.success:
                self.consecutive_failures = 0
                await self.wait_minutes(self.next_interval(record))
            else:
                self.consecutive_failures += 1
                logger.warning(
                    "consecutive_failures",
                    count=self.consecutive_failures,
                    threshold=self.config.max_consecutive_failures,
                )
                if self.consecutive_failures >= self.config.max_consecutive_failures:
                    logger.error(
                        "scheduler_stopped",
                        reason="consecutive_failure_threshold",
                        failures=self.consecutive_failures,
                        last_error=record.error,
                    )
                    return False
                await self.wait_minutes(self.config.recovery_minutes)

            cycle += 1

        logger.info("scheduler_stopped", reason="stop_requested", cycles=self.cycles_run)
        return True
