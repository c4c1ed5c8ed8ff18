"""
ChartPulse - Vision Agents Package

LangGraph pipeline of LLM stages over chart screenshots:
    ChartAnalyst → DecisionMaker → Synthesis → Verdict
"""

from agents.graph import create_vision_graph
from agents.llm import CostTracker, LangChainReasoningClient, ReasoningClient, estimate_cost
from agents.notifier import SoundNotifier
from agents.pipeline import VisionPipeline

__all__ = [
    "CostTracker",
    "LangChainReasoningClient",
    "ReasoningClient",
    "SoundNotifier",
    "VisionPipeline",
    "create_vision_graph",
    "estimate_cost",
]
