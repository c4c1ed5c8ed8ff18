"""
ChartPulse - Core Configuration Module

Centralized, immutable configuration using Pydantic Settings.
Every sub-configuration is frozen; per-run variants are derived with
``model_copy(update=...)`` instead of mutating shared state.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chartpulse.models import CropRect, parse_timeframes


CROP_PRESETS: dict[str, CropRect] = {
    # Price chart only
    "minimal": CropRect(x=140, y=80, width=1000, height=450),
    # More surrounding context
    "wide": CropRect(x=100, y=60, width=1400, height=800),
    # Chart + volume, no lower indicator panes
    "chart_volume": CropRect(x=140, y=80, width=1200, height=550),
}


class BrowserConfig(BaseSettings):
    """Headless browser configuration."""

    model_config = SettingsConfigDict(env_prefix="BROWSER_", frozen=True)

    headless: bool = Field(default=True, description="Run Chromium headless")
    slow_mo_ms: int = Field(default=0, description="Delay between browser actions")
    viewport_width: int = Field(default=1920)
    viewport_height: int = Field(default=1080)
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
    )
    timeout_ms: int = Field(
        default=30000,
        description="Default navigation/action timeout",
    )


class CaptureConfig(BaseSettings):
    """Chart capture configuration."""

    model_config = SettingsConfigDict(env_prefix="CAPTURE_", frozen=True)

    url: str = Field(
        default="https://jup.ag/perps/short/USDC-WBTC",
        description="Chart page to capture",
    )
    timeframes: str = Field(
        default="5m,15m,1h,2h,6h",
        description="Comma-separated timeframes, in display order",
    )
    screenshots_dir: str = Field(default="screenshots")
    file_prefix: str = Field(default="jupiter")
    settle_ms: int = Field(
        default=3000,
        description="Fixed wait after navigation before injecting settings",
    )
    render_delay_ms: int = Field(
        default=8000,
        description="Wait after injecting settings for the chart to render",
    )
    reload_delay_ms: int = Field(
        default=2000,
        description="Wait after the reload that applies injected storage",
    )
    element_to_wait_for: str = Field(
        default="",
        description="Optional CSS selector to wait for (non-fatal)",
    )
    max_concurrency: int = Field(
        default=5,
        description="Maximum browser sessions running at once",
    )
    crop_enabled: bool = Field(default=True)
    crop_x: int = Field(default=0, description="Skip left sidebar")
    crop_y: int = Field(default=100, description="Skip top navigation bar")
    crop_width: int = Field(default=1450)
    crop_height: int = Field(default=550)
    crop_preset: str = Field(default="", description="minimal | wide | chart_volume")

    @field_validator("crop_preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        if v and v not in CROP_PRESETS:
            raise ValueError(
                f"Unknown crop preset '{v}', expected one of {sorted(CROP_PRESETS)}"
            )
        return v

    @property
    def timeframe_list(self) -> list[str]:
        """Get timeframes as an ordered list."""
        return parse_timeframes(self.timeframes)

    @property
    def crop_rect(self) -> CropRect:
        """Resolve the crop rectangle (preset wins over explicit coordinates)."""
        if self.crop_preset:
            return CROP_PRESETS[self.crop_preset]
        return CropRect(
            x=self.crop_x,
            y=self.crop_y,
            width=self.crop_width,
            height=self.crop_height,
        )

    def screenshot_path(self, timeframe: str) -> Path:
        """Deterministic, timeframe-qualified screenshot path."""
        return Path(self.screenshots_dir) / f"{self.file_prefix}-{timeframe}.png"


class VisionConfig(BaseSettings):
    """Vision / reasoning service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="VISION_",
        frozen=True,
        populate_by_name=True,
    )

    api_key: str = Field(default="", alias="OPENAI_API_KEY")
    model: str = Field(default="gpt-4o", description="Vision-capable chat model")
    market: str = Field(
        default="BTCUSD perpetual futures",
        description="Instrument named in the analysis prompts",
    )
    detail: Literal["low", "high", "auto"] = Field(default="high")
    max_tokens: int = Field(default=1000)
    temperature: float = Field(default=0.1)
    request_timeout: float = Field(default=120.0)
    output_dir: str = Field(default="analysis-results")
    save_json: bool = Field(default=True)
    save_text: bool = Field(default=True)
    post_analysis_pause_ms: int = Field(
        default=500,
        description="Pause after the parallel image analyses complete",
    )


class SoundConfig(BaseSettings):
    """Verdict notification sounds."""

    model_config = SettingsConfigDict(env_prefix="SOUND_", frozen=True)

    enabled: bool = Field(default=True)
    volume: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_to_beep: bool = Field(default=True)
    sounds_dir: str = Field(default="assets/sounds")


class SchedulerConfig(BaseSettings):
    """Autonomous cycle scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", frozen=True)

    default_interval_minutes: int = Field(
        default=13,
        description="Fallback interval when the verdict carries none",
    )
    min_interval_minutes: int = Field(default=2)
    max_interval_minutes: int = Field(default=60)
    max_attempts: int = Field(default=3, description="Attempts per step")
    retry_delay_seconds: float = Field(default=30.0)
    step_pause_seconds: float = Field(default=2.0)
    recovery_delay_minutes: int = Field(default=5)
    max_consecutive_failures: int = Field(default=3)
    isolate_steps: bool = Field(
        default=False,
        description="Run capture/analysis as separate processes",
    )
    continuous: bool = Field(default=True)

    @property
    def recovery_minutes(self) -> int:
        """Short wait after a failed cycle."""
        return min(self.default_interval_minutes, self.recovery_delay_minutes)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Application
    env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="CHARTPULSE_ENV",
    )
    debug: bool = Field(default=True, alias="CHARTPULSE_DEBUG")
    log_level: str = Field(default="INFO", alias="CHARTPULSE_LOG_LEVEL")

    # Sub-configurations
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    sound: SoundConfig = Field(default_factory=SoundConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @property
    def is_local(self) -> bool:
        """Check if running in local development mode."""
        return self.env == "development"

    @property
    def has_credentials(self) -> bool:
        """Check if the reasoning service credential is available."""
        return bool(self.vision.api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience alias
settings = get_settings()
