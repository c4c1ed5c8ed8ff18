"""
ChartPulse - Core Package

Multi-timeframe chart capture, vision-model trading recommendations and
an autonomous scheduler paced by the model's own re-check interval.
"""

__version__ = "0.1.0"
__author__ = "ChartPulse Team"

from chartpulse.config import settings, get_settings

__all__ = ["settings", "get_settings", "__version__"]
