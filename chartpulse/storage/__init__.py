"""
ChartPulse - Storage Package

Plain-file persistence for analysis results, reports and cycle records.
"""

from chartpulse.storage.results import (
    ResultStore,
    render_report,
    result_document,
    verdict_from_document,
)

__all__ = ["ResultStore", "render_report", "result_document", "verdict_from_document"]
