"""
Run orchestration module.

Provides target parsing, suite filtering, and parallel suite execution.
"""

from suiterunner.orchestrator.controller import (
    ParallelRunResult,
    RunController,
    SuiteNotFoundError,
    generate_run_name,
)
from suiterunner.orchestrator.filters import suite_matches_filters
from suiterunner.orchestrator.target import (
    ExecutionTarget,
    TargetFormatError,
    TargetType,
    parse_execution_target,
)

__all__ = [
    "ExecutionTarget",
    "ParallelRunResult",
    "RunController",
    "SuiteNotFoundError",
    "TargetFormatError",
    "TargetType",
    "generate_run_name",
    "parse_execution_target",
    "suite_matches_filters",
]
