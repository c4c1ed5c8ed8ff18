"""
ChartPulse - Verdict Agent

Final executive verdict. Unlike the other stages this is a
schema-constrained call: the service must answer through the
``make_trading_verdict`` function, and the arguments are validated again
locally before they are accepted.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from agents.llm import CostTracker, ReasoningClient
from chartpulse.exceptions import PipelineError
from chartpulse.logging import get_vision_logger
from chartpulse.models import (
    ChartAnalysis,
    ComprehensiveAnalysis,
    TradingDecision,
    TradingVerdict,
)

logger = get_vision_logger()


VERDICT_FUNCTION: dict[str, Any] = {
    "name": "make_trading_verdict",
    "description": "Make a final executive trading decision with structured data",
    "parameters": {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["HOLD", "LONG", "SHORT"],
                "description": "The definitive trading action to take",
            },
            "confidence": {
                "type": "integer",
                "minimum": 1,
                "maximum": 100,
                "description": "Confidence percentage in this decision (1-100)",
            },
            "positionSize": {
                "type": "integer",
                "minimum": 1,
                "maximum": 100,
                "description": "Percentage of portfolio to risk (1-100)",
            },
            "timeHorizon": {
                "type": "string",
                "enum": ["short", "medium", "long"],
                "description": "Time horizon: short=intraday, medium=days, long=weeks",
            },
            "riskLevel": {
                "type": "string",
                "enum": ["LOW", "MEDIUM", "HIGH"],
                "description": "Risk level classification",
            },
            "keyReason": {
                "type": "string",
                "description": "Single sentence explaining why this decision is best",
            },
            "entryPrice": {
                "type": "number",
                "description": "Entry price (only for LONG/SHORT actions)",
            },
            "stopLoss": {
                "type": "number",
                "description": "Stop loss price (only for LONG/SHORT actions)",
            },
            "takeProfit": {
                "type": "number",
                "description": "Take profit price (only for LONG/SHORT actions)",
            },
            "criticalWarnings": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Key risks that could invalidate this decision",
            },
            "nextCheckMinutes": {
                "type": "integer",
                "minimum": 1,
                "maximum": 240,
                "description": "Minutes until the market should be checked again",
            },
        },
        "required": [
            "action",
            "confidence",
            "positionSize",
            "timeHorizon",
            "riskLevel",
            "keyReason",
            "criticalWarnings",
        ],
        "additionalProperties": False,
    },
}


VERDICT_PROMPT = """You are a senior trading executive making the final decision. Based on all analysis, provide a definitive trading verdict.

TIMEFRAME SIGNALS: {signals}
OVERALL DECISION: {action} ({confidence}/10)
RISK LEVEL: {risk_level}
ALIGNMENT SCORE: {alignment}/10

Your job is to make the FINAL EXECUTIVE DECISION. Be decisive and clear.

Guidelines:
- confidence: 1-100% (your certainty in this decision)
- positionSize: 1-100% (percentage of portfolio to risk)
- timeHorizon: short=intraday, medium=days, long=weeks
- riskLevel: Based on market conditions and setup quality
- keyReason: One clear sentence why this action is best
- Include entry/exit levels only if action is LONG or SHORT
- criticalWarnings: Key risks that could invalidate the decision
- nextCheckMinutes: How many minutes until the charts should be reviewed again

BE DECISIVE. This is the final call that will be acted upon."""


def build_verdict_prompt(
    analyses: list[ChartAnalysis],
    decision: TradingDecision,
    report: ComprehensiveAnalysis,
) -> str:
    signals = ", ".join(
        f"{a.timeframe}: {a.trend.value} ({a.confidence}/10)" for a in analyses
    )
    return VERDICT_PROMPT.format(
        signals=signals,
        action=decision.action.value,
        confidence=decision.confidence,
        risk_level=report.risk_assessment.risk_level.value,
        alignment=report.quantitative_metrics.timeframe_alignment,
    )


def backfill_levels(verdict: TradingVerdict, decision: TradingDecision) -> TradingVerdict:
    """Actionable verdicts inherit any price level the decision provided and the verdict omitted."""
    if not verdict.is_actionable:
        return verdict
    update = {
        field: getattr(decision, field)
        for field in ("entry_price", "stop_loss", "take_profit")
        if getattr(verdict, field) is None and getattr(decision, field) is not None
    }
    return verdict.model_copy(update=update) if update else verdict


async def make_verdict(
    client: ReasoningClient,
    analyses: list[ChartAnalysis],
    decision: TradingDecision,
    report: ComprehensiveAnalysis,
    costs: CostTracker | None = None,
) -> TradingVerdict:
    """
    Request the final verdict through the structured function call.

    Raises:
        PipelineError: Missing call or arguments outside the schema
    """
    prompt = build_verdict_prompt(analyses, decision, report)
    args = await client.call_function(prompt, VERDICT_FUNCTION)
    if costs is not None:
        costs.add(prompt, json.dumps(args))

    try:
        verdict = TradingVerdict.model_validate(args)
    except ValidationError as e:
        raise PipelineError("verdict", f"structured verdict failed validation: {e}") from e

    verdict = backfill_levels(verdict, decision)
    logger.info(
        "final_verdict",
        action=verdict.action.value,
        confidence=verdict.confidence,
        position_size=verdict.position_size,
        next_check_minutes=verdict.next_check_minutes,
    )
    return verdict
