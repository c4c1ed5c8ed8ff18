"""
ChartPulse - LangGraph Pipeline Graph

Defines the vision StateGraph. Stages after the chart analyses are
strictly sequential; each consumes the full output of its predecessor.

Graph topology:
    START → analyze ─(≥1 analysis)→ decide → synthesize → verdict → END
                    └─(none)──────→ END
    Any stage error routes straight to END.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from langgraph.graph import END, StateGraph

from agents.chart_analyst import analyze_all
from agents.decision_maker import make_decision
from agents.llm import CostTracker, ReasoningClient
from agents.state import PipelineState
from agents.synthesis import synthesize
from agents.verdict import make_verdict
from chartpulse.config import VisionConfig
from chartpulse.logging import get_vision_logger

logger = get_vision_logger()


def _failed(state: PipelineState, stage: str, error: Exception) -> dict[str, Any]:
    message = f"{stage}: {error}" if stage not in str(error) else str(error)
    logger.error("pipeline_stage_failed", stage=stage, error=message, error_type=type(error).__name__)
    return {
        "error": message,
        "agent_trace": [*state.get("agent_trace", []), f"{stage}: ERROR - {error}"],
    }


def _continue_or_end(next_node: str) -> Callable[[PipelineState], str]:
    def route(state: PipelineState) -> str:
        return END if state.get("error") else next_node

    return route


def create_vision_graph(
    client: ReasoningClient,
    config: VisionConfig,
    costs: CostTracker,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Build and compile the vision pipeline StateGraph.

    Args:
        client: Reasoning service used by every stage
        config: Vision configuration
        costs: Accumulator for per-call cost estimates
        sleep: Pause used after the parallel analyses

    Returns:
        Compiled LangGraph runnable (use ``ainvoke``)
    """

    async def analyze_node(state: PipelineState) -> dict[str, Any]:
        outcomes = state.get("outcomes", [])
        try:
            slots = await analyze_all(client, outcomes, config, costs, sleep=sleep)
        except Exception as e:
            return _failed(state, "analysis", e)

        analyses = [a for a in slots if a is not None]
        missing = [o.timeframe for o, a in zip(outcomes, slots) if a is None]
        update: dict[str, Any] = {
            "analyses": analyses,
            "missing_timeframes": missing,
            "agent_trace": [
                *state.get("agent_trace", []),
                f"ChartAnalyst: {len(analyses)}/{len(outcomes)} timeframes analyzed",
            ],
        }
        if not analyses:
            update["error"] = "analysis: no successful chart analyses"
            logger.error("pipeline_gate_closed", requested=len(outcomes))
        return update

    async def decide_node(state: PipelineState) -> dict[str, Any]:
        try:
            decision = await make_decision(client, state["analyses"], config, costs)
        except Exception as e:
            return _failed(state, "decision", e)
        return {
            "decision": decision,
            "agent_trace": [
                *state.get("agent_trace", []),
                f"DecisionMaker: {decision.action.value} ({decision.confidence}/10)",
            ],
        }

    async def synthesize_node(state: PipelineState) -> dict[str, Any]:
        try:
            report = await synthesize(client, state["analyses"], state["decision"], config, costs)
        except Exception as e:
            return _failed(state, "synthesis", e)
        return {
            "report": report,
            "agent_trace": [
                *state.get("agent_trace", []),
                f"Synthesis: risk {report.risk_assessment.risk_level.value}",
            ],
        }

    async def verdict_node(state: PipelineState) -> dict[str, Any]:
        try:
            verdict = await make_verdict(
                client, state["analyses"], state["decision"], state["report"], costs
            )
        except Exception as e:
            return _failed(state, "verdict", e)
        return {
            "verdict": verdict,
            "agent_trace": [
                *state.get("agent_trace", []),
                f"Verdict: {verdict.action.value} ({verdict.confidence}%)",
            ],
        }

    graph = StateGraph(PipelineState)

    # ── Add nodes ──────────────────────────────────────────────
    graph.add_node("analyze", analyze_node)
    graph.add_node("decide", decide_node)
    graph.add_node("synthesize", synthesize_node)
    graph.add_node("verdict", verdict_node)

    graph.set_entry_point("analyze")

    # ── Sequential stages, each gated on the previous one ──────
    graph.add_conditional_edges("analyze", _continue_or_end("decide"), {"decide": "decide", END: END})
    graph.add_conditional_edges(
        "decide", _continue_or_end("synthesize"), {"synthesize": "synthesize", END: END}
    )
    graph.add_conditional_edges("synthesize", _continue_or_end("verdict"), {"verdict": "verdict", END: END})

    # ── End ────────────────────────────────────────────────────
    graph.add_edge("verdict", END)

    return graph.compile()
