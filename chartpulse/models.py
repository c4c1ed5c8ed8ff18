"""
ChartPulse - Data Models

Pydantic models for every artifact that flows through a cycle:
capture outcomes, per-timeframe chart analyses, the cross-timeframe
decision, the comprehensive synthesis, the final verdict and the
cycle record the scheduler reads back.

Models are frozen; JSON uses camelCase keys (the shape the reasoning
service is prompted with and the shape persisted to disk).
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Timeframes
# =============================================================================

_TIMEFRAME_PATTERN = re.compile(r"^\s*(\d+)\s*([mhdw]?)\s*$", re.IGNORECASE)

_UNIT_MINUTES = {"": 1, "m": 1, "h": 60, "d": 1440, "w": 10080}


def resolution_minutes(timeframe: str) -> int:
    """
    Map a timeframe label to its resolution in minutes.

    "5m" -> 5, "1h" -> 60, "1d" -> 1440, "240" -> 240.
    """
    match = _TIMEFRAME_PATTERN.match(timeframe)
    if not match or int(match.group(1)) <= 0:
        raise ValueError(f"Unrecognized timeframe: {timeframe!r}")
    return int(match.group(1)) * _UNIT_MINUTES[match.group(2).lower()]


def parse_timeframes(value: str | list[str]) -> list[str]:
    """Parse a comma-separated timeframe list, keeping order and dropping duplicates."""
    items = value.split(",") if isinstance(value, str) else value
    timeframes: list[str] = []
    for item in items:
        tf = item.strip()
        if not tf or tf in timeframes:
            continue
        resolution_minutes(tf)
        timeframes.append(tf)
    return timeframes


# =============================================================================
# Enumerations
# =============================================================================

class Trend(str, Enum):
    """Per-timeframe trend classification."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    SIDEWAYS = "sideways"


class VolumeLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BollingerState(str, Enum):
    SQUEEZE = "squeeze"
    EXPANSION = "expansion"
    NEUTRAL = "neutral"


class Momentum(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class DecisionAction(str, Enum):
    """Cross-timeframe trading decision."""

    LONG = "long"
    SHORT = "short"
    HOLD = "hold"
    CLOSE = "close"


class OverallTrend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class SynthesisRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class VerdictAction(str, Enum):
    """Terminal verdict action."""

    HOLD = "HOLD"
    LONG = "LONG"
    SHORT = "SHORT"


class TimeHorizon(str, Enum):
    SHORT = "short"    # intraday
    MEDIUM = "medium"  # days
    LONG = "long"      # weeks


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# =============================================================================
# Validation helpers
# =============================================================================

def _lower(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


def _clamp_score(v: Any, low: int = 1, high: int = 10) -> int:
    """Coerce a model-supplied score into [low, high]. Missing values are rejected."""
    if v is None or isinstance(v, bool):
        raise ValueError("score is required")
    score = round(float(v))
    return max(low, min(high, score))


def _coerce_price(v: Any) -> float | None:
    """Accept numbers, numeric strings ("$65,120.5") and null-ish values."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v) if v > 0 else None
    if isinstance(v, str):
        cleaned = v.replace("$", "").replace(",", "").strip()
        if not cleaned or cleaned.lower() in {"null", "none", "n/a", "na"}:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
        return value if value > 0 else None
    return None


class _CamelModel(BaseModel):
    """Frozen model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Capture
# =============================================================================

class CropRect(_CamelModel):
    """Rectangle to crop out of a screenshot, in pixels."""

    x: int = Field(ge=0, description="Left position")
    y: int = Field(ge=0, description="Top position")
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    def clamp(self, image_width: int, image_height: int) -> "CropRect | None":
        """
        Fit the rectangle inside an image of the given size.

        Returns None when the origin lies outside the image, i.e. nothing
        of the rectangle is left after clamping.
        """
        if self.x >= image_width or self.y >= image_height:
            return None
        return CropRect(
            x=self.x,
            y=self.y,
            width=min(self.width, image_width - self.x),
            height=min(self.height, image_height - self.y),
        )

    def as_box(self) -> tuple[int, int, int, int]:
        """Pillow-style (left, upper, right, lower) box."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def __str__(self) -> str:
        return f"{self.x},{self.y} {self.width}x{self.height}"


class CaptureOutcome(_CamelModel):
    """Result of one capture session for one timeframe."""

    timeframe: str
    success: bool
    screenshot_path: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, timeframe: str, path: str) -> "CaptureOutcome":
        return cls(timeframe=timeframe, success=True, screenshot_path=path)

    @classmethod
    def failed(cls, timeframe: str, error: str) -> "CaptureOutcome":
        return cls(timeframe=timeframe, success=False, error_message=error)


class CaptureReport(_CamelModel):
    """Ordered outcomes of one orchestrated capture run."""

    outcomes: list[CaptureOutcome]
    cropped: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def success(self) -> bool:
        return self.success_count > 0

    @property
    def failed_timeframes(self) -> list[str]:
        return [o.timeframe for o in self.outcomes if not o.success]


# =============================================================================
# Stage 1: per-timeframe analysis
# =============================================================================

class KeyLevels(_CamelModel):
    support: float | None = None
    resistance: float | None = None

    @field_validator("support", "resistance", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> float | None:
        return _coerce_price(v)


class Indicators(_CamelModel):
    volume: VolumeLevel
    bollinger: BollingerState
    momentum: Momentum

    @field_validator("volume", "bollinger", "momentum", mode="before")
    @classmethod
    def lower(cls, v: Any) -> Any:
        return _lower(v)


class ChartAnalysis(_CamelModel):
    """Vision analysis of a single timeframe's chart."""

    timeframe: str
    trend: Trend
    strength: int = Field(description="1-10")
    key_levels: KeyLevels = Field(default_factory=KeyLevels)
    indicators: Indicators
    signals: list[str] = Field(default_factory=list)
    confidence: int = Field(description="1-10")
    free_text: str = Field(default="", alias="analysis")

    @field_validator("trend", mode="before")
    @classmethod
    def lower_trend(cls, v: Any) -> Any:
        return _lower(v)

    @field_validator("strength", "confidence", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> int:
        return _clamp_score(v)

    @field_validator("key_levels", mode="before")
    @classmethod
    def default_levels(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("signals", mode="before")
    @classmethod
    def listify(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(s) for s in v]


# =============================================================================
# Stage 2: cross-timeframe decision
# =============================================================================

class TradingDecision(_CamelModel):
    """Directional decision derived from all successful analyses."""

    action: DecisionAction
    confidence: int = Field(description="1-10")
    reasoning: str
    entry_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    risk_reward: float | None = None
    overall_trend: OverallTrend
    market_structure: str = ""
    warnings: list[str] = Field(default_factory=list)
    timeframes: list[ChartAnalysis] = Field(default_factory=list)

    @field_validator("action", "overall_trend", mode="before")
    @classmethod
    def lower_enum(cls, v: Any) -> Any:
        return _lower(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        return _clamp_score(v)

    @field_validator("entry_price", "stop_loss", "take_profit", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> float | None:
        return _coerce_price(v)

    @field_validator("risk_reward", mode="before")
    @classmethod
    def coerce_ratio(cls, v: Any) -> float | None:
        return _coerce_price(v)

    @field_validator("warnings", mode="before")
    @classmethod
    def listify(cls, v: Any) -> Any:
        if v is None:
            return []
        return [v] if isinstance(v, str) else v


# =============================================================================
# Stage 3: comprehensive synthesis
# =============================================================================

class QuantitativeMetrics(_CamelModel):
    bullish_signals: int = 0
    bearish_signals: int = 0
    neutral_signals: int = 0
    avg_confidence: float = 0.0
    timeframe_alignment: int = Field(default=1, description="1-10")

    @field_validator("timeframe_alignment", mode="before")
    @classmethod
    def clamp_alignment(cls, v: Any) -> int:
        return _clamp_score(v)


class RiskAssessment(_CamelModel):
    risk_level: SynthesisRisk
    key_risks: list[str] = Field(default_factory=list)
    risk_mitigation: list[str] = Field(default_factory=list)

    @field_validator("risk_level", mode="before")
    @classmethod
    def lower(cls, v: Any) -> Any:
        return _lower(v)


class StrategicRecommendations(_CamelModel):
    primary: str = ""
    alternative: str = ""
    time_horizon: str = ""
    position_sizing: str = ""


class ComprehensiveAnalysis(_CamelModel):
    """Qualitative/quantitative report over the decision and analyses."""

    executive_summary: str
    market_overview: str = ""
    quantitative_metrics: QuantitativeMetrics
    risk_assessment: RiskAssessment
    strategic_recommendations: StrategicRecommendations = Field(
        default_factory=StrategicRecommendations
    )
    next_steps: list[str] = Field(default_factory=list)


# =============================================================================
# Stage 4: final verdict
# =============================================================================

class TradingVerdict(_CamelModel):
    """Schema-validated terminal recommendation of a cycle."""

    action: VerdictAction
    confidence: int = Field(ge=1, le=100)
    position_size: int = Field(ge=1, le=100, description="% of portfolio")
    time_horizon: TimeHorizon
    risk_level: RiskLevel
    key_reason: str
    entry_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    critical_warnings: list[str] = Field(default_factory=list)
    next_check_minutes: int | None = None

    @property
    def is_actionable(self) -> bool:
        return self.action != VerdictAction.HOLD


# =============================================================================
# Pipeline / scheduler records
# =============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VisionAnalysisResult(_CamelModel):
    """Full output of one vision pipeline run."""

    success: bool
    cycle: int | None = None
    requested_timeframes: list[str] = Field(default_factory=list)
    individual_analyses: list[ChartAnalysis] = Field(default_factory=list)
    missing_timeframes: list[str] = Field(default_factory=list)
    trading_decision: TradingDecision | None = None
    comprehensive_analysis: ComprehensiveAnalysis | None = None
    final_verdict: TradingVerdict | None = None
    total_cost: float = 0.0
    error: str | None = None
    started_at: datetime = Field(default_factory=utcnow)


class CycleRecord(_CamelModel):
    """Append-only audit entry, one per scheduler cycle."""

    cycle_number: int
    started_at: datetime
    finished_at: datetime = Field(default_factory=utcnow)
    success: bool
    cost_estimate: float = 0.0
    verdict: TradingVerdict | None = None
    error: str | None = None
