"""
ChartPulse - Chart Analyst Agent

Vision analysis of one timeframe's chart screenshot. All timeframes of a
cycle are analyzed concurrently; a failed analysis drops only its own
timeframe.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Awaitable, Callable

from agents.llm import CostTracker, ReasoningClient
from agents.parsing import parse_model
from chartpulse.config import VisionConfig
from chartpulse.logging import get_vision_logger
from chartpulse.models import CaptureOutcome, ChartAnalysis

logger = get_vision_logger()


CHART_ANALYSIS_PROMPT = """
You are an expert cryptocurrency trader and technical analyst. Analyze this {timeframe} chart image for {market} trading.

Please provide a detailed analysis focusing on:

1. **Trend Analysis**: Current trend direction and strength
2. **Key Levels**: Important support and resistance levels (provide specific price levels if visible)
3. **Technical Indicators**:
   - Volume analysis (high/medium/low)
   - Bollinger Bands condition (squeeze/expansion/neutral)
   - Overall momentum (increasing/decreasing/stable)
4. **Chart Patterns**: Any recognizable patterns or formations
5. **Entry Signals**: Trading signals for this timeframe
6. **Risk Assessment**: Key risks and invalidation levels

Respond in JSON format with this exact structure:
{{
  "timeframe": "{timeframe}",
  "trend": "bullish|bearish|neutral|sideways",
  "strength": 1-10,
  "keyLevels": {{
    "support": number or null,
    "resistance": number or null
  }},
  "indicators": {{
    "volume": "high|medium|low",
    "bollinger": "squeeze|expansion|neutral",
    "momentum": "increasing|decreasing|stable"
  }},
  "signals": ["array", "of", "trading", "signals"],
  "confidence": 1-10,
  "analysis": "detailed analysis text"
}}

Focus on actionable insights for perpetual futures trading. Be specific about price levels when visible on the chart.
"""


def build_chart_prompt(timeframe: str, market: str) -> str:
    return CHART_ANALYSIS_PROMPT.format(timeframe=timeframe, market=market)


async def analyze_chart(
    client: ReasoningClient,
    image_path: str,
    timeframe: str,
    config: VisionConfig,
    costs: CostTracker | None = None,
) -> ChartAnalysis:
    """
    Analyze one chart image.

    The timeframe label is taken from the caller, never from the model,
    so an analysis can only ever describe a requested timeframe.

    Raises:
        ParseError: Response held no valid analysis object
    """
    prompt = build_chart_prompt(timeframe, config.market)
    logger.info("chart_analysis_started", timeframe=timeframe, image=Path(image_path).name)

    text = await client.complete(prompt, image_path=image_path, max_tokens=config.max_tokens)
    if costs is not None:
        costs.add(prompt, text)

    analysis = parse_model(text, ChartAnalysis, timeframe=timeframe)
    logger.info(
        "chart_analysis_complete",
        timeframe=timeframe,
        trend=analysis.trend.value,
        confidence=analysis.confidence,
    )
    return analysis


async def analyze_all(
    client: ReasoningClient,
    outcomes: list[CaptureOutcome],
    config: VisionConfig,
    costs: CostTracker | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[ChartAnalysis | None]:
    """
    Analyze every successfully captured timeframe concurrently.

    Returns one slot per outcome, in outcome order; failed captures and
    failed analyses leave ``None`` in their slot.
    """
    start = time.time()

    async def one(outcome: CaptureOutcome) -> ChartAnalysis | None:
        if not outcome.success or not outcome.screenshot_path:
            logger.warning(
                "chart_analysis_skipped",
                timeframe=outcome.timeframe,
                reason=outcome.error_message or "no screenshot",
            )
            return None
        try:
            return await analyze_chart(
                client, outcome.screenshot_path, outcome.timeframe, config, costs
            )
        except Exception as e:
            logger.error(
                "chart_analysis_failed",
                timeframe=outcome.timeframe,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    results = list(await asyncio.gather(*[one(o) for o in outcomes]))

    logger.info(
        "chart_analyses_complete",
        successful=sum(1 for r in results if r is not None),
        total=len(outcomes),
        latency_ms=round((time.time() - start) * 1000, 1),
    )

    # Let the API breathe before the sequential stages
    await sleep(config.post_analysis_pause_ms / 1000)
    return results
