"""Tests for chartpulse.config module."""

import os
from unittest.mock import patch

import pytest


class TestSettings:
    """Test Settings configuration loading."""

    def test_default_settings_load(self):
        """Settings should load with defaults (no .env file needed)."""
        from chartpulse.config import Settings

        s = Settings(_env_file=None)
        assert s.env == "development"
        assert s.log_level == "INFO"
        assert s.is_local is True

    def test_environment_values(self):
        """Settings should accept valid environment values."""
        from chartpulse.config import Settings

        for env in ["development", "staging", "production"]:
            s = Settings(CHARTPULSE_ENV=env, _env_file=None)
            assert s.env == env

    def test_settings_are_frozen(self):
        from pydantic import ValidationError

        from chartpulse.config import Settings

        s = Settings(_env_file=None)
        with pytest.raises(ValidationError):
            s.log_level = "DEBUG"

    def test_credentials_from_environment(self):
        from chartpulse.config import Settings, VisionConfig

        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}):
            assert VisionConfig().api_key == "sk-test"
            assert Settings(_env_file=None).has_credentials is True

    def test_missing_credentials(self):
        from chartpulse.config import VisionConfig

        with patch.dict(os.environ, {}, clear=True):
            assert VisionConfig().api_key == ""


class TestCaptureConfig:
    """Capture defaults and derived values."""

    def test_defaults(self):
        from chartpulse.config import CaptureConfig

        c = CaptureConfig()
        assert c.url == "https://jup.ag/perps/short/USDC-WBTC"
        assert c.timeframe_list == ["5m", "15m", "1h", "2h", "6h"]
        assert c.settle_ms == 3000
        assert c.render_delay_ms == 8000

    def test_default_crop_rect(self):
        from chartpulse.config import CaptureConfig

        rect = CaptureConfig().crop_rect
        assert (rect.x, rect.y, rect.width, rect.height) == (0, 100, 1450, 550)

    def test_preset_wins_over_coordinates(self):
        from chartpulse.config import CROP_PRESETS, CaptureConfig

        c = CaptureConfig(crop_preset="wide", crop_x=5)
        assert c.crop_rect == CROP_PRESETS["wide"]

    def test_unknown_preset_rejected(self):
        from pydantic import ValidationError

        from chartpulse.config import CaptureConfig

        with pytest.raises(ValidationError):
            CaptureConfig(crop_preset="panoramic")

    def test_screenshot_path_is_timeframe_qualified(self):
        from chartpulse.config import CaptureConfig

        c = CaptureConfig(screenshots_dir="shots", file_prefix="jupiter")
        assert c.screenshot_path("1h").as_posix() == "shots/jupiter-1h.png"
        assert c.screenshot_path("1h") != c.screenshot_path("15m")

    def test_env_prefix(self):
        from chartpulse.config import CaptureConfig

        with patch.dict(os.environ, {"CAPTURE_TIMEFRAMES": "1h,4h"}):
            assert CaptureConfig().timeframe_list == ["1h", "4h"]

    def test_derived_copy_leaves_original_untouched(self):
        from chartpulse.config import CaptureConfig

        base = CaptureConfig()
        variant = base.model_copy(update={"timeframes": "1h"})
        assert variant.timeframe_list == ["1h"]
        assert base.timeframe_list == ["5m", "15m", "1h", "2h", "6h"]


class TestSchedulerConfig:
    def test_defaults(self):
        from chartpulse.config import SchedulerConfig

        s = SchedulerConfig()
        assert s.default_interval_minutes == 13
        assert (s.min_interval_minutes, s.max_interval_minutes) == (2, 60)
        assert s.max_attempts == 3
        assert s.retry_delay_seconds == 30
        assert s.max_consecutive_failures == 3

    def test_recovery_is_capped_by_interval(self):
        from chartpulse.config import SchedulerConfig

        assert SchedulerConfig().recovery_minutes == 5
        assert SchedulerConfig(default_interval_minutes=3).recovery_minutes == 3
