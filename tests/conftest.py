"""
Shared fixtures: fake browser sessions, a scripted reasoning client and
Pillow-generated fixture images.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import pytest
from PIL import Image


# =============================================================================
# Canned model responses
# =============================================================================

def analysis_json(timeframe: str, trend: str = "bullish", strength: int = 7, confidence: int = 8) -> str:
    return json.dumps({
        "timeframe": timeframe,
        "trend": trend,
        "strength": strength,
        "keyLevels": {"support": 64000, "resistance": 66500},
        "indicators": {"volume": "high", "bollinger": "expansion", "momentum": "increasing"},
        "signals": ["higher lows", "volume breakout"],
        "confidence": confidence,
        "analysis": f"{timeframe} structure remains constructive above support.",
    })


DECISION_JSON = json.dumps({
    "action": "long",
    "confidence": 7,
    "reasoning": "Lower and higher timeframes agree on an uptrend.",
    "entryPrice": 65200,
    "stopLoss": 64100,
    "takeProfit": 67500,
    "riskReward": 2.1,
    "overallTrend": "bullish",
    "marketStructure": "Higher highs and higher lows",
    "warnings": ["Funding elevated"],
})

SYNTHESIS_JSON = json.dumps({
    "executiveSummary": "Trend is aligned to the upside.",
    "marketOverview": "BTC is trending above its 20-period mean.",
    "quantitativeMetrics": {
        "bullishSignals": 4,
        "bearishSignals": 1,
        "neutralSignals": 0,
        "avgConfidence": 7.5,
        "timeframeAlignment": 8,
    },
    "riskAssessment": {
        "riskLevel": "medium",
        "keyRisks": ["Macro event"],
        "riskMitigation": ["Tight stop"],
    },
    "strategicRecommendations": {
        "primary": "Buy pullbacks",
        "alternative": "Wait for breakout retest",
        "timeHorizon": "1-2 days",
        "positionSizing": "Half size",
    },
    "nextSteps": ["Set alerts", "Review at close"],
})

VERDICT_ARGS: dict[str, Any] = {
    "action": "LONG",
    "confidence": 72,
    "positionSize": 10,
    "timeHorizon": "short",
    "riskLevel": "MEDIUM",
    "keyReason": "Multi-timeframe uptrend with volume confirmation.",
    "criticalWarnings": ["Loses 64k support"],
    "nextCheckMinutes": 20,
}


class FakeReasoningClient:
    """Scripted ReasoningClient; image responses are keyed by timeframe."""

    def __init__(
        self,
        image_responses: dict[str, Any] | None = None,
        decision: str = DECISION_JSON,
        synthesis: str = SYNTHESIS_JSON,
        verdict: dict[str, Any] | None = None,
    ):
        self.image_responses = image_responses or {}
        self.decision = decision
        self.synthesis = synthesis
        self.verdict = dict(VERDICT_ARGS) if verdict is None else verdict
        self.image_calls: list[str] = []
        self.text_prompts: list[str] = []
        self.function_calls: list[dict[str, Any]] = []

    @staticmethod
    def _timeframe(image_path: str) -> str:
        # screenshots are named "<prefix>-<timeframe>.png"
        return Path(image_path).stem.rsplit("-", 1)[-1]

    async def complete(self, prompt: str, image_path: str | None = None, max_tokens: int | None = None) -> str:
        if image_path:
            tf = self._timeframe(image_path)
            self.image_calls.append(tf)
            response = self.image_responses.get(tf, analysis_json(tf))
            if isinstance(response, Exception):
                raise response
            return response
        self.text_prompts.append(prompt)
        if "multi-timeframe trading decision" in prompt:
            return self.decision
        return self.synthesis

    async def call_function(self, prompt: str, function_schema: dict[str, Any]) -> dict[str, Any]:
        self.function_calls.append(function_schema)
        return dict(self.verdict)


# =============================================================================
# Fake browser
# =============================================================================

class FakeSession:
    """BrowserSession double that writes a real PNG on screenshot."""

    def __init__(self, failures: dict[str, Exception], delays: dict[str, float], log: list[str]):
        self.failures = failures
        self.delays = delays
        self.log = log
        self.timeframe: str | None = None
        self.closed = False

    async def navigate(self, url, wait_until="domcontentloaded"):
        self.log.append(f"navigate {url}")

    async def reload(self, wait_until="domcontentloaded"):
        self.log.append(f"reload {self.timeframe}")

    async def wait(self, ms):
        if self.timeframe is not None:
            await asyncio.sleep(self.delays.get(self.timeframe, 0))

    async def wait_for_selector(self, selector, timeout_ms=5000):
        return True

    async def evaluate(self, script, arg=None):
        self.timeframe = arg["timeframe"]
        self.log.append(f"inject {self.timeframe} {arg['resolution']}")
        return {"success": True, "timeframe": self.timeframe, "resolution": arg["resolution"]}

    async def screenshot(self, path, full_page=False):
        if self.timeframe in self.failures:
            raise self.failures[self.timeframe]
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", (1920, 1080), "black").save(path)
        self.log.append(f"screenshot {self.timeframe}")
        return str(path)

    async def close(self):
        self.closed = True


class FakeSessionFactory:
    """Callable SessionFactory recording every session it opens."""

    def __init__(self, failures: dict[str, Exception] | None = None, delays: dict[str, float] | None = None):
        self.failures = failures or {}
        self.delays = delays or {}
        self.log: list[str] = []
        self.sessions: list[FakeSession] = []

    def __call__(self):
        @asynccontextmanager
        async def open_session():
            session = FakeSession(self.failures, self.delays, self.log)
            self.sessions.append(session)
            try:
                yield session
            finally:
                await session.close()

        return open_session()


async def no_sleep(seconds: float) -> None:
    return None


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_client():
    return FakeReasoningClient()


@pytest.fixture
def capture_config(tmp_path):
    from chartpulse.config import CaptureConfig

    return CaptureConfig(
        timeframes="5m,15m,1h",
        screenshots_dir=str(tmp_path / "screenshots"),
        settle_ms=0,
        render_delay_ms=0,
        reload_delay_ms=0,
        crop_enabled=False,
    )


@pytest.fixture
def vision_config(tmp_path):
    from chartpulse.config import VisionConfig

    return VisionConfig(
        api_key="test-key",
        output_dir=str(tmp_path / "results"),
        post_analysis_pause_ms=0,
    )


@pytest.fixture
def fixture_image(tmp_path):
    """A 1600x900 PNG on disk."""
    path = tmp_path / "chart.png"
    Image.new("RGB", (1600, 900), "white").save(path)
    return path


def make_result(cycle: int | None = 1, next_check: int | None = 20, success: bool = True):
    """A complete VisionAnalysisResult for persistence tests."""
    from chartpulse.models import (
        ChartAnalysis,
        ComprehensiveAnalysis,
        TradingDecision,
        TradingVerdict,
        VisionAnalysisResult,
    )

    analyses = [ChartAnalysis.model_validate_json(analysis_json("5m"))]
    verdict_args = {**VERDICT_ARGS, "nextCheckMinutes": next_check}
    if next_check is None:
        del verdict_args["nextCheckMinutes"]
    return VisionAnalysisResult(
        success=success,
        cycle=cycle,
        requested_timeframes=["5m", "1h"],
        individual_analyses=analyses,
        missing_timeframes=["1h"],
        trading_decision=TradingDecision.model_validate(
            {**json.loads(DECISION_JSON), "timeframes": analyses}
        ),
        comprehensive_analysis=ComprehensiveAnalysis.model_validate_json(SYNTHESIS_JSON),
        final_verdict=TradingVerdict.model_validate(verdict_args),
        total_cost=0.0123,
    )
