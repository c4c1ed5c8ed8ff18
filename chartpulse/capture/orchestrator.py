"""
ChartPulse - Capture Orchestrator

Fans out one isolated browser session per timeframe, joins on all of
them, optionally crops the screenshots, and returns one CaptureOutcome
per requested timeframe in the caller's order.

Session flow (capture unit):
    navigate → settle → inject timeframe settings → reload →
    render delay → screenshot → close
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

from chartpulse.capture.browser import SessionFactory, playwright_session_factory
from chartpulse.capture.chart_settings import ChartSettings, load_chart_settings
from chartpulse.capture.cropping import crop_image
from chartpulse.config import BrowserConfig, CaptureConfig
from chartpulse.exceptions import CaptureError, CropBoundsError
from chartpulse.logging import get_capture_logger
from chartpulse.models import (
    CaptureOutcome,
    CaptureReport,
    CropRect,
    parse_timeframes,
    resolution_minutes,
)

logger = get_capture_logger()


# Runs in page context. Argument: {settings, theme, timeframe, resolution}.
# Returns {success: true, timeframe, resolution} or {error, timeframe}.
INJECT_SETTINGS_SCRIPT = """
({ settings, theme, timeframe, resolution }) => {
  try {
    const settingsJson = JSON.stringify(settings);
    localStorage.setItem("TRADING_VIEW_STATE", settingsJson);
    localStorage.setItem("tradingview.chartproperties", settingsJson);
    localStorage.setItem("tv_chart_layout", settingsJson);
    localStorage.setItem(
      "tradingview.chart.lastUsedTimeBasedResolution",
      String(resolution)
    );
    localStorage.setItem("lastInterval", String(resolution));
    localStorage.setItem("tradingview.current_theme.name", theme.name);
    localStorage.setItem("chart_theme", JSON.stringify(theme));
    return { success: true, timeframe, resolution };
  } catch (e) {
    return { error: String(e && e.message ? e.message : e), timeframe };
  }
}
"""


class CaptureUnit:
    """Renders and screenshots one timeframe in its own browser session."""

    def __init__(
        self,
        config: CaptureConfig,
        chart_settings: ChartSettings,
        session_factory: SessionFactory,
    ):
        self.config = config
        self.chart_settings = chart_settings
        self.session_factory = session_factory

    def injection_payload(self, timeframe: str) -> dict[str, Any]:
        theme = self.chart_settings.color_theme
        return {
            "settings": self.chart_settings.for_timeframe(timeframe),
            "theme": {**theme.to_dict(), "name": theme.name},
            "timeframe": timeframe,
            "resolution": resolution_minutes(timeframe),
        }

    async def capture(self, timeframe: str) -> CaptureOutcome:
        """Never raises: every failure becomes a failed outcome."""
        start = time.time()
        log = logger.bind(timeframe=timeframe)
        log.info("capture_started")

        try:
            path = await self._run_session(timeframe)
        except Exception as e:
            error = str(e) or type(e).__name__
            log.warning("capture_failed", error=error, error_type=type(e).__name__)
            return CaptureOutcome.failed(timeframe, error)

        log.info(
            "capture_complete",
            screenshot=path,
            latency_ms=round((time.time() - start) * 1000, 1),
        )
        return CaptureOutcome.ok(timeframe, path)

    async def _run_session(self, timeframe: str) -> str:
        cfg = self.config
        # A stale file from an earlier cycle must never stand in for this one
        cfg.screenshot_path(timeframe).unlink(missing_ok=True)

        async with self.session_factory() as session:
            await session.navigate(cfg.url)
            await session.wait(cfg.settle_ms)

            result = await session.evaluate(
                INJECT_SETTINGS_SCRIPT, self.injection_payload(timeframe)
            )
            if not isinstance(result, dict) or not result.get("success"):
                message = result.get("error") if isinstance(result, dict) else result
                raise CaptureError(timeframe, f"settings injection failed: {message}")

            # Injected storage only takes effect on the next load
            await session.reload()
            await session.wait(cfg.reload_delay_ms)

            if cfg.element_to_wait_for:
                await session.wait_for_selector(cfg.element_to_wait_for)

            await session.wait(cfg.render_delay_ms)
            return await session.screenshot(cfg.screenshot_path(timeframe), full_page=False)


class CaptureOrchestrator:
    """
    Concurrent multi-timeframe capture.

    Sessions run concurrently up to ``max_concurrency``; the orchestrator
    waits for all of them before returning, then crops successful
    screenshots in place when cropping is enabled.
    """

    def __init__(
        self,
        config: CaptureConfig,
        browser_config: BrowserConfig | None = None,
        chart_settings: ChartSettings | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.config = config
        self.chart_settings = chart_settings or load_chart_settings()
        self.session_factory = session_factory or playwright_session_factory(
            browser_config or BrowserConfig()
        )
        self.unit = CaptureUnit(config, self.chart_settings, self.session_factory)

    async def capture_all(
        self,
        timeframes: list[str] | None = None,
        crop: CropRect | None = None,
    ) -> CaptureReport:
        """
        Capture every timeframe.

        Args:
            timeframes: Timeframes in display order, duplicates dropped
                (None means the configured list; an empty list captures nothing)
            crop: Crop rectangle; defaults to the configured one when
                cropping is enabled

        Returns:
            CaptureReport with exactly one outcome per timeframe, in order
        """
        timeframes = (
            self.config.timeframe_list if timeframes is None else parse_timeframes(timeframes)
        )
        if crop is None and self.config.crop_enabled:
            crop = self.config.crop_rect

        start = time.time()
        logger.info(
            "multi_capture_started",
            url=self.config.url,
            timeframes=timeframes,
            max_concurrency=self.config.max_concurrency,
        )

        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def bounded(timeframe: str) -> CaptureOutcome:
            async with semaphore:
                return await self.unit.capture(timeframe)

        # gather preserves argument order regardless of completion order
        outcomes = list(await asyncio.gather(*[bounded(tf) for tf in timeframes]))

        cropped = 0
        if crop is not None:
            outcomes, cropped = await self._crop_all(outcomes, crop)

        report = CaptureReport(outcomes=outcomes, cropped=cropped)
        logger.info(
            "multi_capture_complete",
            successful=report.success_count,
            total=len(timeframes),
            failed=report.failed_timeframes,
            cropped=cropped,
            latency_ms=round((time.time() - start) * 1000, 1),
        )
        return report

    async def _crop_all(
        self,
        outcomes: list[CaptureOutcome],
        rect: CropRect,
    ) -> tuple[list[CaptureOutcome], int]:
        cropped = 0
        for outcome in outcomes:
            if not outcome.success or not outcome.screenshot_path:
                continue
            try:
                await asyncio.to_thread(crop_image, outcome.screenshot_path, rect)
                cropped += 1
            except CropBoundsError:
                raise
            except OSError as e:
                logger.warning(
                    "crop_failed",
                    timeframe=outcome.timeframe,
                    error=str(e),
                    action="using_original_screenshot",
                )
        return outcomes, cropped


def outcomes_from_directory(config: CaptureConfig, timeframes: list[str] | None = None) -> list[CaptureOutcome]:
    """
    Rebuild capture outcomes from screenshots already on disk.

    Lets the analysis step run in a separate process from capture.
    """
    outcomes = []
    for timeframe in config.timeframe_list if timeframes is None else parse_timeframes(timeframes):
        path: Path = config.screenshot_path(timeframe)
        if path.exists():
            outcomes.append(CaptureOutcome.ok(timeframe, str(path)))
        else:
            outcomes.append(CaptureOutcome.failed(timeframe, f"screenshot not found: {path}"))
    return outcomes
