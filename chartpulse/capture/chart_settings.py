"""
ChartPulse - Chart Settings

Immutable TradingView layout state loaded once at startup. Per-timeframe
variants are pure copies with the main series interval overridden.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from chartpulse.logging import get_logger
from chartpulse.models import resolution_minutes

logger = get_logger(__name__, component="chart_settings")

DEFAULT_STATE_PATH = Path(__file__).with_name("chart_state.json")

DARK_BACKGROUND = "#0b0e13"


@dataclass(frozen=True)
class ColorTheme:
    background: str
    text_color: str
    grid_color: str
    crosshair_color: str

    @property
    def name(self) -> str:
        return "Dark" if self.background == DARK_BACKGROUND else "Light"

    def to_dict(self) -> dict[str, str]:
        return {
            "background": self.background,
            "textColor": self.text_color,
            "gridColor": self.grid_color,
            "crosshairColor": self.crosshair_color,
        }


@dataclass(frozen=True)
class ChartSettings:
    """
    Chart layout state, held as serialized JSON so no caller can mutate it.

    Use ``for_timeframe`` to derive the blob injected into a page.
    """

    raw: str

    @classmethod
    def from_file(cls, path: str | Path = DEFAULT_STATE_PATH) -> "ChartSettings":
        text = Path(path).read_text(encoding="utf-8")
        # Normalize and fail fast on malformed files
        instance = cls(raw=json.dumps(json.loads(text), separators=(",", ":")))
        logger.info("chart_settings_loaded", path=str(path), **instance.summary())
        return instance

    @property
    def data(self) -> dict[str, Any]:
        """A fresh, caller-owned copy of the settings."""
        return json.loads(self.raw)

    def for_timeframe(self, timeframe: str) -> dict[str, Any]:
        """Copy of the settings with every main series interval set to the timeframe."""
        interval = str(resolution_minutes(timeframe))
        settings = self.data
        for chart in settings.get("charts") or []:
            for pane in chart.get("panes") or []:
                for source in pane.get("sources") or []:
                    if source.get("type") == "MainSeries" and source.get("state") is not None:
                        source["state"]["interval"] = interval
        return settings

    def _chart(self) -> dict[str, Any]:
        charts = self.data.get("charts") or []
        return charts[0] if charts else {}

    @property
    def indicators(self) -> list[dict[str, Any]]:
        """Studies on the first pane."""
        panes = self._chart().get("panes") or []
        if not panes:
            return []
        return [
            s for s in panes[0].get("sources", [])
            if s.get("type") in ("Study", "study_Volume")
        ]

    @property
    def color_theme(self) -> ColorTheme:
        props = self._chart().get("chartProperties", {})
        pane = props.get("paneProperties", {})
        scales = props.get("scalesProperties", {})
        return ColorTheme(
            background=pane.get("background") or DARK_BACKGROUND,
            text_color=scales.get("textColor") or "#B2B5BE",
            grid_color=(pane.get("vertGridProperties") or {}).get("color") or "#182430",
            crosshair_color=(pane.get("crossHairProperties") or {}).get("color") or "#9598A1",
        )

    def summary(self) -> dict[str, Any]:
        data = self.data
        return {
            "chart_count": len(data.get("charts") or []),
            "indicator_count": len(self.indicators),
            "timezone": self._chart().get("timezone", "Unknown"),
            "theme": self.color_theme.name,
            "layout": data.get("layout", "Unknown"),
        }


@lru_cache
def load_chart_settings(path: str | None = None) -> ChartSettings:
    """Load the chart settings once per process."""
    return ChartSettings.from_file(path or DEFAULT_STATE_PATH)
