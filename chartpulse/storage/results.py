"""
ChartPulse - Result Store

Plain-file persistence for pipeline output and the scheduler's cycle log:
- analysis-[c<cycle>-]<timestamp>.json   structured pipeline result
- analysis-[c<cycle>-]<timestamp>.txt    human-readable report
- cycles.jsonl                           append-only CycleRecord log

Result files are never overwritten: a name collision within one
millisecond gets a "_001" style suffix, which sorts after the unsuffixed
name so filename order stays chronological. Cycle records are looked up
by cycle number, not by filename order.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from chartpulse.logging import get_logger
from chartpulse.models import CycleRecord, TradingVerdict, VisionAnalysisResult

logger = get_logger(__name__, component="result_store")

CYCLE_LOG = "cycles.jsonl"


def _timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}"


class ResultStore:
    """Filesystem store rooted at the analysis output directory."""

    def __init__(self, output_dir: str | Path = "analysis-results"):
        self.output_dir = Path(output_dir)

    # ─── Pipeline results ─────────────────────────────────────────────────────

    def _stem(self, cycle: int | None) -> str:
        prefix = f"analysis-c{cycle:06d}-" if cycle is not None else "analysis-"
        stem = f"{prefix}{_timestamp()}"
        candidate = stem
        n = 1
        while (self.output_dir / f"{candidate}.json").exists() or (
            self.output_dir / f"{candidate}.txt"
        ).exists():
            candidate = f"{stem}_{n:03d}"
            n += 1
        return candidate

    def save(
        self,
        result: VisionAnalysisResult,
        save_json: bool = True,
        save_text: bool = True,
    ) -> list[Path]:
        """Persist a pipeline result; both files share one timestamped stem."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stem = self._stem(result.cycle)
        saved: list[Path] = []

        if save_json:
            path = self.output_dir / f"{stem}.json"
            path.write_text(json.dumps(result_document(result), indent=2), encoding="utf-8")
            saved.append(path)
            logger.info("analysis_json_saved", path=str(path))

        if save_text:
            path = self.output_dir / f"{stem}.txt"
            path.write_text(render_report(result), encoding="utf-8")
            saved.append(path)
            logger.info("analysis_report_saved", path=str(path))

        return saved

    def latest_result(self, cycle: int | None = None) -> dict[str, Any] | None:
        """
        Most recent structured result, optionally restricted to one cycle.
        """
        pattern = f"analysis-c{cycle:06d}-*.json" if cycle is not None else "analysis-*.json"
        files = sorted(self.output_dir.glob(pattern)) if self.output_dir.exists() else []
        if not files:
            return None
        try:
            return json.loads(files[-1].read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("result_read_failed", path=str(files[-1]), error=str(e))
            return None

    # ─── Cycle log ────────────────────────────────────────────────────────────

    @property
    def cycle_log_path(self) -> Path:
        return self.output_dir / CYCLE_LOG

    def load_cycle_records(self) -> list[CycleRecord]:
        if not self.cycle_log_path.exists():
            return []
        records = []
        for line_no, line in enumerate(
            self.cycle_log_path.read_text(encoding="utf-8").splitlines(), start=1
        ):
            if not line.strip():
                continue
            try:
                records.append(CycleRecord.model_validate_json(line))
            except ValidationError as e:
                logger.warning("cycle_record_invalid", line=line_no, error=str(e))
        return records

    def latest_cycle_record(self) -> CycleRecord | None:
        records = self.load_cycle_records()
        return max(records, key=lambda r: r.cycle_number) if records else None

    def last_cycle_number(self) -> int:
        record = self.latest_cycle_record()
        return record.cycle_number if record else 0

    def append_cycle_record(self, record: CycleRecord) -> bool:
        """Append a cycle record; a second record for the same cycle is refused."""
        if any(r.cycle_number == record.cycle_number for r in self.load_cycle_records()):
            logger.warning("cycle_record_exists", cycle=record.cycle_number)
            return False
        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.cycle_log_path, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json(by_alias=True) + "\n")
        logger.debug("cycle_record_written", cycle=record.cycle_number, success=record.success)
        return True


def verdict_from_document(document: dict[str, Any] | None) -> TradingVerdict | None:
    """Read the final verdict back out of a persisted result document."""
    raw = ((document or {}).get("analysisData") or {}).get("finalVerdict")
    if not raw:
        return None
    try:
        return TradingVerdict.model_validate(raw)
    except ValidationError as e:
        logger.warning("persisted_verdict_invalid", error=str(e))
        return None


def result_document(result: VisionAnalysisResult) -> dict[str, Any]:
    """Structured file layout for a pipeline result."""
    data = result.to_json_dict()
    decision = result.trading_decision
    verdict = result.final_verdict
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cycle": result.cycle,
        "success": result.success,
        "error": result.error,
        "analysisData": {
            "requestedTimeframes": data["requestedTimeframes"],
            "individualAnalyses": data["individualAnalyses"],
            "missingTimeframes": data["missingTimeframes"],
            "tradingDecision": data["tradingDecision"],
            "comprehensiveAnalysis": data["comprehensiveAnalysis"],
            "finalVerdict": data["finalVerdict"],
            "totalCost": data["totalCost"],
        },
        "metadata": {
            "timeframes": [a.timeframe for a in result.individual_analyses],
            "overallTrend": decision.overall_trend.value if decision else None,
            "confidence": decision.confidence if decision else None,
            "finalAction": verdict.action.value if verdict else None,
            "finalConfidence": verdict.confidence if verdict else None,
        },
    }


def _price(value: float | None) -> str:
    return f"${value:,.2f}" if value is not None else "N/A"


def render_report(result: VisionAnalysisResult) -> str:
    """Human-readable text report of a pipeline result."""
    rule = "=" * 50
    lines = [
        "VISION AI ANALYSIS REPORT",
        f"Generated: {datetime.now(timezone.utc).isoformat()}",
    ]
    if result.cycle is not None:
        lines.append(f"Cycle: {result.cycle}")
    lines += [rule, ""]

    if not result.success:
        lines += ["ANALYSIS FAILED", f"Error: {result.error}", ""]
        return "\n".join(lines)

    lines += [
        "ANALYSIS SUMMARY",
        f"Timeframes Analyzed: {len(result.individual_analyses)}"
        f"/{len(result.requested_timeframes)}",
    ]
    if result.missing_timeframes:
        lines.append(f"Missing Timeframes: {', '.join(result.missing_timeframes)}")
    lines += [f"Estimated Cost: ${result.total_cost:.4f}", ""]

    for a in result.individual_analyses:
        lines += [
            f"{a.timeframe.upper()} ANALYSIS",
            "-" * 30,
            f"Trend: {a.trend.value.upper()}",
            f"Strength: {a.strength}/10",
            f"Confidence: {a.confidence}/10",
        ]
        if a.key_levels.support or a.key_levels.resistance:
            lines.append("Key Levels:")
            if a.key_levels.support:
                lines.append(f"  Support: {_price(a.key_levels.support)}")
            if a.key_levels.resistance:
                lines.append(f"  Resistance: {_price(a.key_levels.resistance)}")
        lines += [
            "Indicators:",
            f"  Volume: {a.indicators.volume.value}",
            f"  Bollinger: {a.indicators.bollinger.value}",
            f"  Momentum: {a.indicators.momentum.value}",
        ]
        if a.signals:
            lines.append(f"Signals: {', '.join(a.signals)}")
        lines += [f"Analysis: {a.free_text}", ""]

    d = result.trading_decision
    if d:
        lines += [
            "TRADING DECISION",
            "=" * 30,
            f"Action: {d.action.value.upper()}",
            f"Confidence: {d.confidence}/10",
            f"Overall Trend: {d.overall_trend.value}",
        ]
        if d.entry_price:
            lines.append(f"Entry Price: {_price(d.entry_price)}")
        if d.stop_loss:
            lines.append(f"Stop Loss: {_price(d.stop_loss)}")
        if d.take_profit:
            lines.append(f"Take Profit: {_price(d.take_profit)}")
        if d.risk_reward:
            lines.append(f"Risk/Reward: 1:{d.risk_reward}")
        lines += ["", f"Market Structure: {d.market_structure}", "", f"Reasoning: {d.reasoning}"]
        if d.warnings:
            lines += ["", "Warnings:"] + [f"  • {w}" for w in d.warnings]
        lines.append("")

    c = result.comprehensive_analysis
    if c:
        m = c.quantitative_metrics
        r = c.risk_assessment
        s = c.strategic_recommendations
        lines += [
            "COMPREHENSIVE ANALYSIS",
            "=" * 30,
            f"Executive Summary: {c.executive_summary}",
            "",
            f"Market Overview: {c.market_overview}",
            "",
            "Quantitative Metrics:",
            f"  Bullish Signals: {m.bullish_signals}",
            f"  Bearish Signals: {m.bearish_signals}",
            f"  Neutral Signals: {m.neutral_signals}",
            f"  Average Confidence: {m.avg_confidence:.1f}/10",
            f"  Timeframe Alignment: {m.timeframe_alignment}/10",
            "",
            "Risk Assessment:",
            f"  Risk Level: {r.risk_level.value.upper()}",
            "  Key Risks:",
        ]
        lines += [f"    • {k}" for k in r.key_risks]
        lines.append("  Risk Mitigation:")
        lines += [f"    • {k}" for k in r.risk_mitigation]
        lines += [
            "",
            "Strategic Recommendations:",
            f"  Primary: {s.primary}",
            f"  Alternative: {s.alternative}",
            f"  Time Horizon: {s.time_horizon}",
            f"  Position Sizing: {s.position_sizing}",
            "",
            "Next Steps:",
        ]
        lines += [f"  {i}. {step}" for i, step in enumerate(c.next_steps, start=1)]
        lines.append("")

    v = result.final_verdict
    if v:
        lines += [
            "FINAL TRADING VERDICT",
            "=" * 30,
            f"ACTION: {v.action.value}",
            f"CONFIDENCE: {v.confidence}%",
            f"POSITION SIZE: {v.position_size}% of portfolio",
            f"TIME HORIZON: {v.time_horizon.value.upper()}",
            f"RISK LEVEL: {v.risk_level.value}",
            "",
            f"KEY REASON: {v.key_reason}",
        ]
        if v.is_actionable:
            lines += [
                "",
                "EXECUTION DETAILS:",
                f"  Entry: {_price(v.entry_price)}",
                f"  Stop Loss: {_price(v.stop_loss)}",
                f"  Take Profit: {_price(v.take_profit)}",
            ]
        if v.critical_warnings:
            lines += ["", "CRITICAL WARNINGS:"] + [f"  • {w}" for w in v.critical_warnings]
        if v.next_check_minutes is not None:
            lines += ["", f"NEXT CHECK: {v.next_check_minutes} minutes"]
        lines += [
            "",
            f"RECOMMENDATION: {v.action.value} {v.position_size}% ({v.confidence}% confidence)",
            "=" * 30,
            "",
        ]

    lines += [rule, "End of Report", ""]
    return "\n".join(lines)
