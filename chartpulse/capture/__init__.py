"""
ChartPulse - Capture Package

Isolated per-timeframe browser sessions, chart settings injection and
screenshot cropping.
"""

from chartpulse.capture.chart_settings import ChartSettings, load_chart_settings
from chartpulse.capture.cropping import crop_image, get_crop_preset, parse_crop_rect, preview_crop
from chartpulse.capture.orchestrator import (
    CaptureOrchestrator,
    CaptureUnit,
    outcomes_from_directory,
)

__all__ = [
    "ChartSettings",
    "load_chart_settings",
    "crop_image",
    "get_crop_preset",
    "parse_crop_rect",
    "preview_crop",
    "CaptureOrchestrator",
    "CaptureUnit",
    "outcomes_from_directory",
]
