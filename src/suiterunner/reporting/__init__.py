"""Result reporting."""

from suiterunner.reporting.reporter import (
    Reporter,
    ReportEntry,
    ResultStatus,
    RunSummary,
    StepResult,
    StepStatistics,
    report_file_name,
)

__all__ = [
    "ReportEntry",
    "Reporter",
    "ResultStatus",
    "RunSummary",
    "StepResult",
    "StepStatistics",
    "report_file_name",
]
