"""
ChartPulse - Synthesis Agent

Comprehensive quantitative/qualitative report over the decision and the
analyses it was derived from.
"""

from __future__ import annotations

from agents.llm import CostTracker, ReasoningClient
from agents.parsing import parse_model
from chartpulse.config import VisionConfig
from chartpulse.logging import get_vision_logger
from chartpulse.models import ChartAnalysis, ComprehensiveAnalysis, TradingDecision

logger = get_vision_logger()

SYNTHESIS_MAX_TOKENS = 1500


SYNTHESIS_PROMPT = """You are an expert quantitative analyst. Based on the following chart analyses and trading decision, provide a comprehensive final analysis.

INDIVIDUAL TIMEFRAME ANALYSES:
{context}

TRADING DECISION:
Action: {action}
Entry: {entry}
Stop Loss: {stop}
Take Profit: {target}
Risk Level: {confidence}/10
Reasoning: {reasoning}

Please provide a comprehensive analysis in this EXACT JSON format:
{{
  "executiveSummary": "2-3 sentence high-level summary of the analysis",
  "marketOverview": "Detailed market context and current situation",
  "quantitativeMetrics": {{
    "bullishSignals": 0,
    "bearishSignals": 0,
    "neutralSignals": 0,
    "avgConfidence": 0,
    "timeframeAlignment": 0
  }},
  "riskAssessment": {{
    "riskLevel": "low|medium|high",
    "keyRisks": ["risk1", "risk2"],
    "riskMitigation": ["mitigation1", "mitigation2"]
  }},
  "strategicRecommendations": {{
    "primary": "Main recommendation",
    "alternative": "Alternative approach",
    "timeHorizon": "Expected time horizon",
    "positionSizing": "Position sizing recommendations"
  }},
  "nextSteps": ["step1", "step2", "step3"]
}}

Calculate quantitative metrics based on the analyses:
- Count bullish, bearish, neutral signals across timeframes
- Calculate average confidence
- Rate timeframe alignment (1-10 scale based on how aligned different timeframes are)"""


def _level(value: float | None) -> str:
    return str(value) if value else "N/A"


def build_synthesis_prompt(analyses: list[ChartAnalysis], decision: TradingDecision) -> str:
    context = "\n".join(
        f"{a.timeframe}: {a.trend.value} ({a.confidence}/10 confidence) - {a.free_text}"
        for a in analyses
    )
    return SYNTHESIS_PROMPT.format(
        context=context,
        action=decision.action.value,
        entry=_level(decision.entry_price),
        stop=_level(decision.stop_loss),
        target=_level(decision.take_profit),
        confidence=decision.confidence,
        reasoning=decision.reasoning,
    )


async def synthesize(
    client: ReasoningClient,
    analyses: list[ChartAnalysis],
    decision: TradingDecision,
    config: VisionConfig,
    costs: CostTracker | None = None,
) -> ComprehensiveAnalysis:
    """Produce the comprehensive analysis. Raises ParseError on a bad response."""
    prompt = build_synthesis_prompt(analyses, decision)
    text = await client.complete(prompt, max_tokens=SYNTHESIS_MAX_TOKENS)
    if costs is not None:
        costs.add(prompt, text)

    report = parse_model(text, ComprehensiveAnalysis)
    logger.info(
        "comprehensive_analysis_generated",
        risk_level=report.risk_assessment.risk_level.value,
        alignment=report.quantitative_metrics.timeframe_alignment,
    )
    return report
