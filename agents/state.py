"""
ChartPulse - Pipeline State Schema

Typed state for the LangGraph vision pipeline.
Each stage node reads the fields it needs and returns the ones it produces.
"""

from __future__ import annotations

from typing import TypedDict

from chartpulse.models import (
    CaptureOutcome,
    ChartAnalysis,
    ComprehensiveAnalysis,
    TradingDecision,
    TradingVerdict,
)


class PipelineState(TypedDict, total=False):
    """
    Shared state passed through the pipeline StateGraph.

    Fields:
        outcomes:               Capture outcomes, one per requested timeframe
        analyses:               Successful chart analyses, in timeframe order
        missing_timeframes:     Requested timeframes without an analysis

        decision:               Cross-timeframe TradingDecision
        report:                 ComprehensiveAnalysis
        verdict:                Final TradingVerdict

        agent_trace:            Stage execution trace for debugging
        error:                  Error message if the pipeline aborts
    """

    # Input
    outcomes: list[CaptureOutcome]

    # Stage outputs
    analyses: list[ChartAnalysis]
    missing_timeframes: list[str]
    decision: TradingDecision
    report: ComprehensiveAnalysis
    verdict: TradingVerdict

    # Meta
    agent_trace: list[str]
    error: str
