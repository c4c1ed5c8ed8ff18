"""
ChartPulse - Vision Pipeline

High-level wrapper around the vision StateGraph: runs one cycle's
analysis over a set of capture outcomes, assembles the result, persists
it and fires the verdict notification.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from agents.graph import create_vision_graph
from agents.llm import CostTracker, LangChainReasoningClient, ReasoningClient
from agents.notifier import SoundNotifier
from agents.state import PipelineState
from chartpulse.config import VisionConfig
from chartpulse.logging import get_vision_logger
from chartpulse.models import CaptureOutcome, VisionAnalysisResult, utcnow
from chartpulse.storage.results import ResultStore

logger = get_vision_logger()


class VisionPipeline:
    """
    Analyze → decide → synthesize → verdict over one cycle's screenshots.

    ``run`` never raises for stage failures: they come back as a result
    with ``success=False``. A missing credential is raised at construction.
    """

    def __init__(
        self,
        config: VisionConfig,
        client: ReasoningClient | None = None,
        store: ResultStore | None = None,
        notifier: SoundNotifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.client = client or LangChainReasoningClient(config)
        self.store = store if store is not None else ResultStore(config.output_dir)
        self.notifier = notifier
        self.sleep = sleep

    async def run(
        self,
        outcomes: list[CaptureOutcome],
        cycle: int | None = None,
        save_json: bool | None = None,
    ) -> VisionAnalysisResult:
        """
        Run the full pipeline.

        Args:
            outcomes: One capture outcome per requested timeframe, in order
            cycle: Scheduler cycle number, recorded in the result and filenames
            save_json: Overrides ``config.save_json``; scheduled runs force it on

        Returns:
            VisionAnalysisResult (persisted when successful). A result that
            could not be written comes back with ``success=False``.
        """
        start = time.time()
        started_at = utcnow()
        requested = [o.timeframe for o in outcomes]
        costs = CostTracker(self.config.model)

        logger.info(
            "vision_pipeline_started",
            cycle=cycle,
            requested=requested,
            captured=sum(1 for o in outcomes if o.success),
        )

        initial_state: PipelineState = {"outcomes": outcomes, "agent_trace": []}
        try:
            graph = create_vision_graph(self.client, self.config, costs, sleep=self.sleep)
            state: PipelineState = await graph.ainvoke(initial_state)
        except Exception as e:
            logger.error("graph_execution_failed", error=str(e), error_type=type(e).__name__)
            state = {**initial_state, "error": str(e) or type(e).__name__}

        error = state.get("error") or None
        analyses = state.get("analyses", [])
        missing = state.get("missing_timeframes")
        if missing is None:
            analyzed = {a.timeframe for a in analyses}
            missing = [tf for tf in requested if tf not in analyzed]

        result = VisionAnalysisResult(
            success=error is None and state.get("verdict") is not None,
            cycle=cycle,
            requested_timeframes=requested,
            individual_analyses=analyses,
            missing_timeframes=missing,
            trading_decision=state.get("decision"),
            comprehensive_analysis=state.get("report"),
            final_verdict=state.get("verdict"),
            total_cost=round(costs.total, 6),
            error=error,
            started_at=started_at,
        )

        logger.info(
            "vision_pipeline_complete",
            cycle=cycle,
            success=result.success,
            analyzed=len(analyses),
            missing=missing,
            cost_usd=result.total_cost,
            trace=state.get("agent_trace", []),
            latency_ms=round((time.time() - start) * 1000, 1),
        )

        if result.success:
            try:
                self._persist(result, save_json)
            except OSError as e:
                logger.error("result_persist_failed", cycle=cycle, error=str(e))
                return result.model_copy(
                    update={"success": False, "error": f"persistence: {e}"}
                )
            if self.notifier is not None and result.final_verdict is not None:
                await self.notifier.alert(result.final_verdict)

        return result

    def _persist(self, result: VisionAnalysisResult, save_json: bool | None) -> None:
        self.store.save(
            result,
            save_json=self.config.save_json if save_json is None else save_json,
            save_text=self.config.save_text,
        )
