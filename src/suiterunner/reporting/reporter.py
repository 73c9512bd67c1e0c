"""
Result reporter.

Collects one ``ReportEntry`` per executed test-data item (API) or test case
(UI), computes run summaries, and writes the JSON result file.
"""

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ResultStatus(StrEnum):
    """Outcome of a step or report entry."""

    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"


def _utc_timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class StepResult:
    """Result of a single UI step."""

    step_id: str
    keyword: str
    status: ResultStatus
    execution_time_ms: int = 0
    timestamp: str = field(default_factory=_utc_timestamp)
    locator: dict[str, Any] | None = None
    value: str | None = None
    error: str | None = None
    screenshot_path: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stepId": self.step_id,
            "keyword": self.keyword,
            "status": str(self.status),
            "executionTimeMs": self.execution_time_ms,
            "timestamp": self.timestamp,
            "attempts": self.attempts,
        }
        if self.locator is not None:
            data["locator"] = self.locator
        if self.value is not None:
            data["value"] = self.value
        if self.error is not None:
            data["error"] = self.error
        if self.screenshot_path is not None:
            data["screenshotPath"] = self.screenshot_path
        return data


@dataclass
class ReportEntry:
    """One executed test-data item or UI test case."""

    test_case: str
    data_set: str
    status: ResultStatus
    error: str | None = None
    assertions_passed: int = 0
    assertions_failed: int = 0
    response_time_ms: int = 0
    response_body: Any = None
    step_results: list[StepResult] | None = None
    api_details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "testCase": self.test_case,
            "dataSet": self.data_set,
            "status": str(self.status),
            "assertionsPassed": self.assertions_passed,
            "assertionsFailed": self.assertions_failed,
            "responseTimeMs": self.response_time_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.response_body is not None:
            data["responseBody"] = self.response_body
        if self.step_results is not None:
            data["stepResults"] = [s.to_dict() for s in self.step_results]
        if self.api_details is not None:
            data["apiDetails"] = self.api_details
        return data


@dataclass
class StepStatistics:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class RunSummary:
    """Aggregate counters for one target run."""

    suite_name: str
    run_id: str
    tags: dict[str, str] = field(default_factory=dict)
    total_test_cases: int = 0
    total_data_sets: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    total_assertions_passed: int = 0
    total_assertions_failed: int = 0
    execution_time_ms: int = 0
    step_statistics: StepStatistics = field(default_factory=StepStatistics)
    report_path: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "suiteName": self.suite_name,
            "runId": self.run_id,
            "tags": self.tags,
            "totalTestCases": self.total_test_cases,
            "totalDataSets": self.total_data_sets,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "totalAssertionsPassed": self.total_assertions_passed,
            "totalAssertionsFailed": self.total_assertions_failed,
            "executionTimeMs": self.execution_time_ms,
            "stepStatistics": self.step_statistics.to_dict(),
        }


def report_file_name(suite_name: str, when: datetime | None = None) -> str:
    """``result-<suite name, whitespace as _>-<ISO timestamp, : and . as ->.json``."""
    stamp = (when or datetime.now(UTC)).astimezone(UTC)
    iso = stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    safe_name = re.sub(r"\s+", "_", suite_name).replace("/", "_").replace("\\", "_")
    return f"result-{safe_name}-{re.sub(r'[:.]', '-', iso)}.json"


class Reporter:
    """
    Accumulates report entries for one target run.

    Usage:
        reporter = Reporter(reports_dir)
        reporter.start("Checkout", tags, run_id)
        reporter.add(entry)
        path = reporter.write_report_to_file()
    """

    def __init__(self, reports_dir: str | Path = "reports") -> None:
        self._reports_dir = Path(reports_dir)
        self._entries: list[ReportEntry] = []
        self._lock = threading.Lock()
        self._start = time.monotonic()
        self._suite_name = ""
        self._tags: dict[str, str] = {}
        self._run_id = ""
        self._errors: list[str] = []
        self._report_path: Path | None = None
        self._log = logger.bind(component="reporter")

    @property
    def suite_name(self) -> str:
        return self._suite_name

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def entries(self) -> list[ReportEntry]:
        with self._lock:
            return list(self._entries)

    def start(
        self,
        suite_name: str,
        tags: dict[str, str] | None = None,
        run_id: str | None = None,
    ) -> None:
        """Reset the reporter for a new run."""
        with self._lock:
            self._suite_name = suite_name
            self._entries = []
            self._errors = []
            self._tags = dict(tags or {})
            self._run_id = run_id or f"run-{int(time.time() * 1000)}"
            self._start = time.monotonic()
            self._report_path = None

        self._log.info("Started reporting", suite=suite_name, run_id=self._run_id)

    def add(self, entry: ReportEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        self._log.debug(
            "Recorded result",
            test_case=entry.test_case,
            data_set=entry.data_set,
            status=str(entry.status),
        )

    def add_error(self, message: str) -> None:
        """Record a run-level error that is not tied to an entry."""
        with self._lock:
            self._errors.append(message)

    def summary(self) -> RunSummary:
        """Compute the summary for the entries recorded so far."""
        with self._lock:
            entries = list(self._entries)
            errors = list(self._errors)

        steps = [s for e in entries for s in (e.step_results or [])]
        return RunSummary(
            suite_name=self._suite_name,
            run_id=self._run_id,
            tags=dict(self._tags),
            total_test_cases=len({e.test_case for e in entries}),
            total_data_sets=len(entries),
            passed=sum(1 for e in entries if e.status == ResultStatus.PASS),
            failed=sum(1 for e in entries if e.status == ResultStatus.FAIL),
            skipped=sum(1 for e in entries if e.status == ResultStatus.SKIPPED),
            total_assertions_passed=sum(e.assertions_passed for e in entries),
            total_assertions_failed=sum(e.assertions_failed for e in entries),
            execution_time_ms=int((time.monotonic() - self._start) * 1000),
            step_statistics=StepStatistics(
                total=len(steps),
                passed=sum(1 for s in steps if s.status == ResultStatus.PASS),
                failed=sum(1 for s in steps if s.status == ResultStatus.FAIL),
                skipped=sum(1 for s in steps if s.status == ResultStatus.SKIPPED),
            ),
            report_path=str(self._report_path) if self._report_path else None,
            errors=errors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary().to_dict(),
            "results": [e.to_dict() for e in self.entries],
        }

    def write_report_to_file(self) -> Path:
        """Write the JSON report and return its path."""
        path = self._reports_dir / report_file_name(self._suite_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, default=str), encoding="utf-8")
        self._report_path = path
        self._log.info("Report written", path=str(path))
        return path

    @staticmethod
    def print_summary(summary: RunSummary) -> None:
        """Print the fixed, machine-parseable summary block."""
        # Emitted in one write; suites print from worker threads.
        block = "\n".join([
            "\nTest Results Summary:",
            f"Total: {summary.total_data_sets}",
            f"{summary.passed} passed",
            f"{summary.failed} failed",
            f"Execution time: {summary.execution_time_ms}ms",
        ])
        print(block, flush=True)
