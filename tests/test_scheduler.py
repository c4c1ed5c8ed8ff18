"""Tests for step retry, interval extraction and the cycle loop."""

import pytest
from PIL import Image

from tests.conftest import FakeReasoningClient, FakeSessionFactory, make_result, no_sleep


class ScriptedStep:
    """Step returning queued results; the last one repeats."""

    def __init__(self, name, results):
        self.name = name
        self.results = list(results)
        self.calls: list[int] = []

    async def run(self, cycle):
        self.calls.append(cycle)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class SavingStep:
    """Analysis stand-in that persists a result for the running cycle."""

    name = "analysis"

    def __init__(self, store, next_check=20):
        self.store = store
        self.next_check = next_check

    async def run(self, cycle):
        from chartpulse.scheduler import StepResult

        self.store.save(make_result(cycle=cycle, next_check=self.next_check))
        return StepResult.success()


class SleepRecorder:
    def __init__(self, on_sleep=None):
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep(seconds)


def _ok():
    from chartpulse.scheduler import StepResult

    return StepResult.success()


def _fail(error="boom"):
    from chartpulse.scheduler import StepResult

    return StepResult.failure(error)


@pytest.fixture
def scheduler_config():
    from chartpulse.config import SchedulerConfig

    return SchedulerConfig(
        default_interval_minutes=13,
        min_interval_minutes=2,
        max_interval_minutes=60,
        max_attempts=3,
        retry_delay_seconds=30,
        step_pause_seconds=2,
        recovery_delay_minutes=5,
        max_consecutive_failures=3,
    )


@pytest.fixture
def store(tmp_path):
    from chartpulse.storage.results import ResultStore

    return ResultStore(tmp_path / "results")


# =============================================================================
# Interval extraction
# =============================================================================

class TestExtractNextCheckInterval:
    @pytest.mark.parametrize(
        "value,expected",
        [(120, 60), (1, 2), (13, 13), (2, 2), (60, 60), (7.6, 8)],
    )
    def test_clamped(self, value, expected):
        from chartpulse.scheduler import extract_next_check_interval

        assert extract_next_check_interval(value, 13, 2, 60) == expected

    @pytest.mark.parametrize("value", [None, "soon", True, {"nextCheckMinutes": "later"}])
    def test_invalid_falls_back_to_default(self, value):
        from chartpulse.scheduler import extract_next_check_interval

        assert extract_next_check_interval(value, 13, 2, 60) == 13

    def test_default_itself_is_clamped(self):
        from chartpulse.scheduler import extract_next_check_interval

        assert extract_next_check_interval(None, 90, 2, 60) == 60

    def test_reads_persisted_document(self, store):
        from chartpulse.scheduler import extract_next_check_interval

        store.save(make_result(cycle=1, next_check=45))
        assert extract_next_check_interval(store.latest_result(1), 13, 2, 60) == 45

    def test_reads_verdict_and_record(self):
        from datetime import datetime, timezone

        from chartpulse.models import CycleRecord
        from chartpulse.scheduler import extract_next_check_interval

        verdict = make_result(next_check=25).final_verdict
        record = CycleRecord(
            cycle_number=1,
            started_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            success=True,
            verdict=verdict,
        )

        assert extract_next_check_interval(verdict, 13, 2, 60) == 25
        assert extract_next_check_interval(record, 13, 2, 60) == 25

    def test_verdict_without_next_check(self):
        from chartpulse.scheduler import extract_next_check_interval

        verdict = make_result(next_check=None).final_verdict
        assert extract_next_check_interval(verdict, 13, 2, 60) == 13


# =============================================================================
# Retry
# =============================================================================

class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_second_attempt(self):
        from chartpulse.scheduler import run_with_retry

        step = ScriptedStep("capture", [_fail(), _ok()])
        sleep = SleepRecorder()

        result = await run_with_retry(step, 1, max_attempts=3, delay_seconds=30, sleep=sleep)

        assert result.ok
        assert len(step.calls) == 2
        assert sleep.calls == [30]

    @pytest.mark.asyncio
    async def test_exhausts_attempts(self):
        from chartpulse.scheduler import run_with_retry

        step = ScriptedStep("capture", [_fail("no timeframe captured")])
        sleep = SleepRecorder()

        result = await run_with_retry(step, 1, max_attempts=3, delay_seconds=30, sleep=sleep)

        assert not result.ok
        assert result.error == "no timeframe captured"
        assert len(step.calls) == 3
        assert sleep.calls == [30, 30]

    @pytest.mark.asyncio
    async def test_exception_counts_as_failed_attempt(self):
        from chartpulse.scheduler import run_with_retry

        step = ScriptedStep("analysis", [RuntimeError("browser crashed"), _ok()])

        result = await run_with_retry(step, 1, max_attempts=3, delay_seconds=1, sleep=no_sleep)

        assert result.ok
        assert len(step.calls) == 2

    @pytest.mark.asyncio
    async def test_configuration_error_not_retried(self):
        from chartpulse.exceptions import ConfigurationError
        from chartpulse.scheduler import run_with_retry

        step = ScriptedStep("analysis", [ConfigurationError("OPENAI_API_KEY is not set"), _ok()])
        sleep = SleepRecorder()

        with pytest.raises(ConfigurationError):
            await run_with_retry(step, 1, max_attempts=3, delay_seconds=30, sleep=sleep)

        assert len(step.calls) == 1
        assert sleep.calls == []


class TestSubprocessStep:
    def test_cycle_placeholder_substituted(self):
        from chartpulse.scheduler import SubprocessStep

        step = SubprocessStep("analysis", ["analyze", "--cycle", "{cycle}"], python="py")
        assert step.command(12) == ["py", "-m", "chartpulse", "analyze", "--cycle", "12"]

    @staticmethod
    def _process(code):
        from unittest.mock import AsyncMock, MagicMock

        proc = MagicMock()
        proc.stdout = None
        proc.wait = AsyncMock(return_value=code)
        return AsyncMock(return_value=proc)

    @pytest.mark.asyncio
    async def test_exit_status_maps_to_result(self):
        from unittest.mock import patch

        from chartpulse.scheduler import SubprocessStep

        step = SubprocessStep("capture", ["capture"], python="py")
        with patch("asyncio.create_subprocess_exec", self._process(0)):
            assert (await step.run(1)).ok
        with patch("asyncio.create_subprocess_exec", self._process(1)):
            result = await step.run(1)

        assert not result.ok
        assert result.error == "process exited with code 1"

    @pytest.mark.asyncio
    async def test_fatal_exit_status_raises(self):
        from unittest.mock import patch

        from chartpulse.exceptions import EXIT_FATAL, FatalStepError
        from chartpulse.scheduler import SubprocessStep, run_with_retry

        step = SubprocessStep("analysis", ["analyze"], python="py")
        exec_mock = self._process(EXIT_FATAL)
        with patch("asyncio.create_subprocess_exec", exec_mock):
            with pytest.raises(FatalStepError):
                await run_with_retry(step, 1, max_attempts=3, delay_seconds=30, sleep=no_sleep)

        assert exec_mock.await_count == 1


class TestAnalysisStep:
    @pytest.mark.asyncio
    async def test_runs_pipeline_on_screenshots_on_disk(self, capture_config, vision_config):
        from agents.pipeline import VisionPipeline
        from chartpulse.scheduler import AnalysisStep

        config = capture_config.model_copy(update={"timeframes": "5m,1h"})
        path = config.screenshot_path("5m")
        path.parent.mkdir(parents=True)
        Image.new("RGB", (800, 600), "black").save(path)

        client = FakeReasoningClient()
        pipeline = VisionPipeline(vision_config, client=client, sleep=no_sleep)
        result = await AnalysisStep(pipeline, config).run(3)

        assert result.ok
        assert client.image_calls == ["5m"]
        assert result.value.missing_timeframes == ["1h"]
        assert result.value.cycle == 3

    @pytest.mark.asyncio
    async def test_interval_survives_json_output_disabled(
        self, capture_config, vision_config, scheduler_config
    ):
        from agents.pipeline import VisionPipeline
        from chartpulse.scheduler import AnalysisStep, CycleScheduler
        from chartpulse.storage.results import ResultStore

        path = capture_config.screenshot_path("5m")
        path.parent.mkdir(parents=True)
        Image.new("RGB", (800, 600), "black").save(path)

        config = vision_config.model_copy(update={"save_json": False})
        store = ResultStore(config.output_dir)
        pipeline = VisionPipeline(config, client=FakeReasoningClient(), store=store, sleep=no_sleep)
        step = AnalysisStep(pipeline, capture_config, timeframes=["5m"])
        scheduler = CycleScheduler(scheduler_config, [step], store, sleep=no_sleep)

        assert await scheduler.run(once=True) is True

        record = store.latest_cycle_record()
        assert record.verdict is not None
        assert scheduler.next_interval(record) == 20


# =============================================================================
# Scheduler
# =============================================================================

class TestCycleScheduler:
    @pytest.mark.asyncio
    async def test_once_runs_single_cycle(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_ok()])
        sleep = SleepRecorder()
        scheduler = CycleScheduler(scheduler_config, [capture, SavingStep(store)], store, sleep=sleep)

        assert await scheduler.run(once=True) is True

        assert capture.calls == [1]
        assert sleep.calls == [2]
        [record] = store.load_cycle_records()
        assert record.cycle_number == 1
        assert record.success
        assert record.verdict.action.value == "LONG"
        assert record.cost_estimate == pytest.approx(0.0123)

    @pytest.mark.asyncio
    async def test_once_reports_failure(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_fail("no timeframe captured")])
        analysis = ScriptedStep("analysis", [_ok()])
        scheduler = CycleScheduler(scheduler_config, [capture, analysis], store, sleep=no_sleep)

        assert await scheduler.run(once=True) is False

        assert analysis.calls == []
        [record] = store.load_cycle_records()
        assert record.error == "capture: no timeframe captured"
        assert record.verdict is None

    @pytest.mark.asyncio
    async def test_cycle_numbers_continue_from_log(self, scheduler_config, store):
        from datetime import datetime, timezone

        from chartpulse.models import CycleRecord
        from chartpulse.scheduler import CycleScheduler

        store.append_cycle_record(
            CycleRecord(cycle_number=7, started_at=datetime(2025, 1, 1, tzinfo=timezone.utc), success=True)
        )
        capture = ScriptedStep("capture", [_ok()])
        scheduler = CycleScheduler(scheduler_config, [capture, SavingStep(store)], store, sleep=no_sleep)

        await scheduler.run(once=True)

        assert capture.calls == [8]
        assert store.last_cycle_number() == 8

    @pytest.mark.asyncio
    async def test_consecutive_failures_stop_loop(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_fail()])
        analysis = ScriptedStep("analysis", [_ok()])
        sleep = SleepRecorder()
        scheduler = CycleScheduler(scheduler_config, [capture, analysis], store, sleep=sleep)

        assert await scheduler.run() is False

        # three cycles, three attempts each, never a fourth cycle
        assert capture.calls == [1, 1, 1, 2, 2, 2, 3, 3, 3]
        assert analysis.calls == []
        assert scheduler.cycles_run == 3
        assert [r.success for r in store.load_cycle_records()] == [False, False, False]
        # recovery waits of five one-minute slices after the first two cycles
        assert sleep.calls.count(60) == 10
        assert sleep.calls.count(30) == 6

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        config = scheduler_config.model_copy(update={"max_attempts": 1, "max_consecutive_failures": 2})
        capture = ScriptedStep("capture", [_fail(), _ok(), _fail(), _fail()])
        scheduler = CycleScheduler(config, [capture, SavingStep(store)], store, sleep=no_sleep)

        assert await scheduler.run() is False

        assert [r.success for r in store.load_cycle_records()] == [False, True, False, False]

    @pytest.mark.asyncio
    async def test_waits_clamped_verdict_interval_and_stops_on_request(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_ok()])
        scheduler = None

        def stop_on_countdown(seconds):
            if seconds == 60:
                scheduler.request_stop()

        sleep = SleepRecorder(stop_on_countdown)
        scheduler = CycleScheduler(
            scheduler_config, [capture, SavingStep(store, next_check=120)], store, sleep=sleep
        )

        assert await scheduler.run() is True

        assert scheduler.cycles_run == 1
        assert sleep.calls == [2, 60]
        assert scheduler.next_interval(store.latest_cycle_record()) == 60

    @pytest.mark.asyncio
    async def test_wait_minutes_sleeps_one_minute_slices(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        sleep = SleepRecorder()
        scheduler = CycleScheduler(scheduler_config, [], store, sleep=sleep)

        await scheduler.wait_minutes(7)

        assert sleep.calls == [60] * 7

    @pytest.mark.asyncio
    async def test_stop_before_start_runs_nothing(self, scheduler_config, store):
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_ok()])
        scheduler = CycleScheduler(scheduler_config, [capture], store, sleep=no_sleep)
        scheduler.request_stop()

        assert await scheduler.run() is True
        assert capture.calls == []
        assert scheduler.stopped

    @pytest.mark.asyncio
    async def test_crop_outside_screenshot_stops_at_once(self, capture_config, scheduler_config, store):
        from chartpulse.capture.chart_settings import load_chart_settings
        from chartpulse.capture.orchestrator import CaptureOrchestrator
        from chartpulse.scheduler import CaptureStep, CycleScheduler

        config = capture_config.model_copy(update={"crop_enabled": True, "crop_x": 5000})
        factory = FakeSessionFactory()
        orchestrator = CaptureOrchestrator(config, chart_settings=load_chart_settings(), session_factory=factory)
        analysis = ScriptedStep("analysis", [_ok()])
        scheduler = CycleScheduler(scheduler_config, [CaptureStep(orchestrator), analysis], store, sleep=no_sleep)

        assert await scheduler.run() is False

        # one session per timeframe, no retries and no further cycles
        assert len(factory.sessions) == 3
        assert scheduler.cycles_run == 1
        assert analysis.calls == []
        [record] = store.load_cycle_records()
        assert not record.success
        assert record.error.startswith("capture: ")

    @pytest.mark.asyncio
    async def test_configuration_error_stops_loop(self, scheduler_config, store):
        from chartpulse.exceptions import ConfigurationError
        from chartpulse.scheduler import CycleScheduler

        capture = ScriptedStep("capture", [_ok()])
        analysis = ScriptedStep("analysis", [ConfigurationError("OPENAI_API_KEY is not set")])
        sleep = SleepRecorder()
        scheduler = CycleScheduler(scheduler_config, [capture, analysis], store, sleep=sleep)

        assert await scheduler.run() is False

        assert capture.calls == [1]
        assert analysis.calls == [1]
        # only the pause between steps; no retry delay, no recovery wait
        assert sleep.calls == [2]
        [record] = store.load_cycle_records()
        assert record.error == "analysis: OPENAI_API_KEY is not set"
