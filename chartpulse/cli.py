"""
ChartPulse - Command Line Interface

Usage:
    python -m chartpulse capture   [--timeframes 5m,1h] [--headed] [--no-crop]
    python -m chartpulse analyze   [--cycle N] [--model gpt-4o-mini] [--no-sound]
    python -m chartpulse cycle     capture + analyze once, in-process
    python -m chartpulse run       [--once | --continuous] [--interval 13] [--isolated]
    python -m chartpulse test-crop IMAGE [--crop-config x,y,w,h | --crop-preset wide]
    python -m chartpulse settings
    python -m chartpulse test-sounds

Exit code 0 on success, 1 on failure, 2 (EXIT_FATAL) on a configuration
fault such as a missing credential or a crop rectangle outside the image.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

from agents.notifier import SoundNotifier
from agents.pipeline import VisionPipeline
from chartpulse.capture.chart_settings import load_chart_settings
from chartpulse.capture.cropping import get_crop_preset, parse_crop_rect, preview_crop
from chartpulse.capture.orchestrator import CaptureOrchestrator, outcomes_from_directory
from chartpulse.config import BrowserConfig, CaptureConfig, Settings, VisionConfig, get_settings
from chartpulse.exceptions import EXIT_FATAL, FATAL_ERRORS, ChartPulseError
from chartpulse.logging import get_logger, setup_logging
from chartpulse.models import CropRect, VisionAnalysisResult, parse_timeframes, resolution_minutes
from chartpulse.scheduler import (
    AnalysisStep,
    CaptureStep,
    CycleScheduler,
    Step,
    SubprocessStep,
)
from chartpulse.storage.results import ResultStore

logger = get_logger(__name__, component="cli")


# =============================================================================
# Config overrides
# =============================================================================

def _crop_override(args: argparse.Namespace) -> CropRect | None:
    if getattr(args, "crop_config", None):
        return parse_crop_rect(args.crop_config)
    if getattr(args, "crop_preset", None):
        return get_crop_preset(args.crop_preset)
    return None


def _capture_config(settings: Settings, args: argparse.Namespace) -> CaptureConfig:
    update: dict[str, Any] = {}
    if getattr(args, "url", None):
        update["url"] = args.url
    if getattr(args, "timeframes", None):
        update["timeframes"] = ",".join(parse_timeframes(args.timeframes))
    if getattr(args, "screenshots_dir", None):
        update["screenshots_dir"] = args.screenshots_dir
    if getattr(args, "wait", None) is not None:
        update["render_delay_ms"] = args.wait
    if getattr(args, "no_crop", False):
        update["crop_enabled"] = False
    return settings.capture.model_copy(update=update)


def _browser_config(settings: Settings, args: argparse.Namespace) -> BrowserConfig:
    if getattr(args, "headed", False):
        return settings.browser.model_copy(update={"headless": False})
    return settings.browser


def _vision_config(settings: Settings, args: argparse.Namespace) -> VisionConfig:
    update: dict[str, Any] = {}
    if getattr(args, "model", None):
        update["model"] = args.model
    if getattr(args, "detail", None):
        update["detail"] = args.detail
    if getattr(args, "no_save", False):
        update["save_json"] = False
        update["save_text"] = False
    return settings.vision.model_copy(update=update)


def _build_pipeline(settings: Settings, args: argparse.Namespace) -> VisionPipeline:
    vision = _vision_config(settings, args)
    notifier = None if getattr(args, "no_sound", False) else SoundNotifier(settings.sound)
    return VisionPipeline(vision, notifier=notifier)


def _print_result(result: VisionAnalysisResult) -> None:
    print()
    print("═" * 60)
    if not result.success:
        print(f"  ✗  Analysis failed: {result.error}")
        print("═" * 60)
        return

    for a in result.individual_analyses:
        print(f"  {a.timeframe:>4}: {a.trend.value:<8} strength {a.strength}/10, confidence {a.confidence}/10")
    if result.missing_timeframes:
        print(f"  Missing: {', '.join(result.missing_timeframes)}")

    verdict = result.final_verdict
    if verdict is not None:
        print()
        print(f"  VERDICT: {verdict.action.value} ({verdict.confidence}% confidence)")
        print(f"  Position size: {verdict.position_size}%  Horizon: {verdict.time_horizon.value}  Risk: {verdict.risk_level.value}")
        print(f"  Reason: {verdict.key_reason}")
        if verdict.is_actionable:
            print(
                f"  🚀 EXECUTE: {verdict.action.value} {verdict.position_size}% "
                f"(entry {verdict.entry_price}, stop {verdict.stop_loss}, target {verdict.take_profit})"
            )
    print(f"  Estimated cost: ${result.total_cost:.4f}")
    print("═" * 60)


# =============================================================================
# Commands
# =============================================================================

async def cmd_capture(settings: Settings, args: argparse.Namespace) -> int:
    capture = _capture_config(settings, args)
    orchestrator = CaptureOrchestrator(capture, _browser_config(settings, args))
    report = await orchestrator.capture_all(crop=_crop_override(args))

    for outcome in report.outcomes:
        mark = "✓" if outcome.success else "✗"
        print(f"  {mark}  {outcome.timeframe:>4}  {outcome.screenshot_path or outcome.error_message}")
    return 0 if report.success else 1


async def cmd_analyze(settings: Settings, args: argparse.Namespace) -> int:
    capture = _capture_config(settings, args)
    pipeline = _build_pipeline(settings, args)
    # A scheduled run always writes the structured result the scheduler reads back
    save_json = True if args.cycle is not None else None
    result = await pipeline.run(outcomes_from_directory(capture), cycle=args.cycle, save_json=save_json)
    _print_result(result)
    return 0 if result.success else 1


async def cmd_cycle(settings: Settings, args: argparse.Namespace) -> int:
    capture = _capture_config(settings, args)
    pipeline = _build_pipeline(settings, args)

    orchestrator = CaptureOrchestrator(capture, _browser_config(settings, args))
    report = await orchestrator.capture_all(crop=_crop_override(args))
    if not report.success:
        logger.error("cycle_aborted", reason="no_screenshots", failed=report.failed_timeframes)
        return 1

    result = await pipeline.run(report.outcomes)
    _print_result(result)
    return 0 if result.success else 1


def _scheduler_steps(settings: Settings, args: argparse.Namespace, isolated: bool) -> list[Step]:
    if isolated:
        forwarded: list[str] = []
        if args.timeframes:
            forwarded += ["--timeframes", args.timeframes]
        analyze_args = ["analyze", "--cycle", "{cycle}", *forwarded]
        if args.model:
            analyze_args += ["--model", args.model]
        if args.detail:
            analyze_args += ["--detail", args.detail]
        if args.no_sound:
            analyze_args.append("--no-sound")
        return [
            SubprocessStep("capture", ["capture", *forwarded]),
            SubprocessStep("analysis", analyze_args),
        ]

    capture = _capture_config(settings, args)
    return [
        CaptureStep(CaptureOrchestrator(capture, settings.browser)),
        AnalysisStep(_build_pipeline(settings, args), capture),
    ]


async def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    update: dict[str, Any] = {}
    if args.interval is not None:
        update["default_interval_minutes"] = args.interval
    if args.isolated:
        update["isolate_steps"] = True
    scheduler_config = settings.scheduler.model_copy(update=update)

    if not settings.has_credentials:
        logger.error("missing_credentials", variable="OPENAI_API_KEY")
        return EXIT_FATAL

    once = args.once or (not args.continuous and not scheduler_config.continuous)
    scheduler = CycleScheduler(
        scheduler_config,
        _scheduler_steps(settings, args, scheduler_config.isolate_steps),
        ResultStore(settings.vision.output_dir),
    )
    scheduler.install_signal_handlers()
    ok = await scheduler.run(once=once)
    return 0 if ok else 1


async def cmd_test_crop(settings: Settings, args: argparse.Namespace) -> int:
    rect = _crop_override(args) or settings.capture.crop_rect
    report = await asyncio.to_thread(preview_crop, args.image, rect)
    print(f"  Original: {report.original_size[0]}x{report.original_size[1]}")
    print(f"  Cropped:  {report.cropped_size[0]}x{report.cropped_size[1]}")
    print(f"  Reduced:  {report.reduction_pct}%")
    print(f"  Output:   {report.output_path}")
    return 0


async def cmd_settings(settings: Settings, args: argparse.Namespace) -> int:
    chart = load_chart_settings(args.file)
    for key, value in chart.summary().items():
        print(f"  {key:<16} {value}")
    for indicator in chart.indicators:
        name = (indicator.get("metaInfo") or {}).get("description") or indicator.get("type")
        print(f"  {'indicator':<16} {name}")
    for tf in settings.capture.timeframe_list:
        print(f"  {'timeframe':<16} {tf} ({resolution_minutes(tf)} min)")
    return 0


async def cmd_test_sounds(settings: Settings, args: argparse.Namespace) -> int:
    await SoundNotifier(settings.sound).test_all()
    return 0


COMMANDS = {
    "capture": cmd_capture,
    "analyze": cmd_analyze,
    "cycle": cmd_cycle,
    "run": cmd_run,
    "test-crop": cmd_test_crop,
    "settings": cmd_settings,
    "test-sounds": cmd_test_sounds,
}


# =============================================================================
# CLI Entry Point
# =============================================================================

def _add_capture_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", help="Chart page to capture")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--wait", type=int, help="Render delay in milliseconds")
    parser.add_argument("--no-crop", action="store_true", help="Keep full screenshots")
    _add_crop_args(parser)


def _add_crop_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--crop-config", help='Crop rectangle "x,y,width,height"')
    group.add_argument("--crop-preset", help="minimal | wide | chart_volume")


def _add_vision_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--model", help="Vision model (e.g. gpt-4o, gpt-4o-mini)")
    parser.add_argument("--detail", choices=["low", "high", "auto"], help="Image detail level")
    parser.add_argument("--no-sound", action="store_true", help="Disable verdict sounds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chartpulse",
        description="ChartPulse multi-timeframe chart capture and vision trading analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", help="Override CHARTPULSE_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="Capture chart screenshots for every timeframe")
    capture.add_argument("--timeframes", help="Comma-separated timeframes")
    capture.add_argument("--screenshots-dir", help="Screenshot output directory")
    _add_capture_args(capture)

    analyze = sub.add_parser("analyze", help="Run the vision pipeline on existing screenshots")
    analyze.add_argument("--timeframes", help="Comma-separated timeframes")
    analyze.add_argument("--screenshots-dir", help="Screenshot directory")
    analyze.add_argument("--cycle", type=int, help="Scheduler cycle number for the result")
    analyze.add_argument("--no-save", action="store_true", help="Do not write result files")
    _add_vision_args(analyze)

    cycle = sub.add_parser("cycle", help="Capture and analyze once, in-process")
    cycle.add_argument("--timeframes", help="Comma-separated timeframes")
    cycle.add_argument("--screenshots-dir", help="Screenshot directory")
    _add_capture_args(cycle)
    _add_vision_args(cycle)

    run = sub.add_parser("run", help="Run the autonomous cycle scheduler")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    mode.add_argument("--continuous", action="store_true", help="Run until stopped (default)")
    run.add_argument("--interval", type=int, help="Default minutes between cycles")
    run.add_argument("--isolated", action="store_true", help="Run steps as separate processes")
    run.add_argument("--timeframes", help="Comma-separated timeframes")
    _add_vision_args(run)

    test_crop = sub.add_parser("test-crop", help="Preview a crop rectangle on an existing image")
    test_crop.add_argument("image", help="Image to crop (a copy is written)")
    _add_crop_args(test_crop)

    chart = sub.add_parser("settings", help="Show the loaded chart settings")
    chart.add_argument("--file", help="Chart state JSON (defaults to the bundled layout)")

    sub.add_parser("test-sounds", help="Play every verdict sound")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    settings = get_settings()

    try:
        return asyncio.run(COMMANDS[args.command](settings, args))
    except FATAL_ERRORS as e:
        # The scheduler does not retry isolated steps that exit with this status
        logger.error("command_fatal", command=args.command, error=str(e), error_type=type(e).__name__)
        return EXIT_FATAL
    except ChartPulseError as e:
        logger.error("command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1
    except ValueError as e:
        # Unparseable timeframe lists and similar user input
        logger.error("invalid_argument", command=args.command, error=str(e))
        return 1
    except OSError as e:
        logger.error("io_error", command=args.command, error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted", command=args.command)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
