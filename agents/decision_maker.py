"""
ChartPulse - Decision Maker Agent

Cross-timeframe trading decision from the full set of successful chart
analyses.
"""

from __future__ import annotations

from agents.llm import CostTracker, ReasoningClient
from agents.parsing import parse_model
from chartpulse.config import VisionConfig
from chartpulse.exceptions import PipelineError
from chartpulse.logging import get_vision_logger
from chartpulse.models import ChartAnalysis, TradingDecision

logger = get_vision_logger()

DECISION_MAX_TOKENS = 800


DECISION_PROMPT = """
You are an expert cryptocurrency trader making a multi-timeframe trading decision for {market}.

Based on the following individual timeframe analyses:

{analyses}

Provide a comprehensive trading decision that considers:

1. **Multi-Timeframe Alignment**: How timeframes align or conflict
2. **Market Structure**: Overall market structure and phase
3. **Risk Management**: Appropriate position sizing and risk levels
4. **Entry Strategy**: Best entry approach given the multi-timeframe view
5. **Exit Strategy**: Stop loss and take profit recommendations

Respond in JSON format with this exact structure:
{{
  "action": "long|short|hold|close",
  "confidence": 1-10,
  "reasoning": "detailed reasoning for the decision",
  "entryPrice": number or null,
  "stopLoss": number or null,
  "takeProfit": number or null,
  "riskReward": number or null,
  "overallTrend": "bullish|bearish|neutral",
  "marketStructure": "description of current market structure",
  "warnings": ["array", "of", "important", "warnings"]
}}

Focus on practical trading advice with specific price levels and risk management.
"""


def summarize_analyses(analyses: list[ChartAnalysis]) -> str:
    return "\n---\n".join(
        f"{a.timeframe}: {a.trend.value} (strength: {a.strength}/10, "
        f"confidence: {a.confidence}/10)\n"
        f"Signals: {', '.join(a.signals)}\n"
        f"Analysis: {a.free_text}\n"
        for a in analyses
    )


def build_decision_prompt(analyses: list[ChartAnalysis], market: str) -> str:
    return DECISION_PROMPT.format(market=market, analyses=summarize_analyses(analyses))


async def make_decision(
    client: ReasoningClient,
    analyses: list[ChartAnalysis],
    config: VisionConfig,
    costs: CostTracker | None = None,
) -> TradingDecision:
    """
    Combine per-timeframe analyses into one decision.

    Raises:
        PipelineError: No analyses to decide on (the service is not called)
        ParseError: Response held no valid decision object
    """
    if not analyses:
        raise PipelineError("decision", "no successful chart analyses to decide on")

    prompt = build_decision_prompt(analyses, config.market)
    text = await client.complete(prompt, max_tokens=DECISION_MAX_TOKENS)
    if costs is not None:
        costs.add(prompt, text)

    decision = parse_model(
        text,
        TradingDecision,
        timeframes=list(analyses),
    )
    logger.info(
        "trading_decision_made",
        action=decision.action.value,
        confidence=decision.confidence,
        overall_trend=decision.overall_trend.value,
        timeframes=len(analyses),
    )
    return decision
