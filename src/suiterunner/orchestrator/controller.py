"""
Run controller.

Resolves what to run (a target address, a suite file, or every suite in the
suites directory), runs suites in parallel under a semaphore, and wipes local
variables once the whole run is over.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import structlog

from suiterunner.config import RunnerSettings, load_environment, load_runner_config
from suiterunner.db.client import DatabaseClient
from suiterunner.dsl.models import TestSuite
from suiterunner.dsl.parser import SuiteLoader, SuiteLoadError
from suiterunner.orchestrator.filters import describe_filters, suite_matches_filters
from suiterunner.orchestrator.target import ExecutionTarget, TargetType, parse_execution_target
from suiterunner.reporting.reporter import Reporter, RunSummary
from suiterunner.runner.custom_steps import CustomStepRegistry, load_custom_step_modules
from suiterunner.runner.session import BrowserSession
from suiterunner.runner.test_runner import TestRunner
from suiterunner.variables.registry import VariableRegistry
from suiterunner.variables.store import VariableStore

logger = structlog.get_logger(__name__)


class SuiteNotFoundError(LookupError):
    """No suite file matches the target's suite id or name."""

    def __init__(self, target: ExecutionTarget) -> None:
        self.target = target
        super().__init__(f"Suite not found: {target.suite_id}:{target.suite_name}")


@dataclass
class ParallelRunResult:
    """Outcome of running every suite of the suites directory."""

    run_id: str
    max_parallel: int
    summaries: list[RunSummary] = field(default_factory=list)
    skipped_suites: list[str] = field(default_factory=list)
    failed_suites: dict[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.failed_suites and all(s.success for s in self.summaries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "maxParallel": self.max_parallel,
            "summaries": [s.to_dict() for s in self.summaries],
            "skippedSuites": self.skipped_suites,
            "failedSuites": self.failed_suites,
            "durationMs": self.duration_ms,
        }


def generate_run_name() -> str:
    """``Run #<1..999> - <local timestamp>``."""
    return f"Run #{random.randint(1, 999)} - {datetime.now().strftime('%m/%d/%Y, %I:%M:%S %p')}"


def describe_target(target: ExecutionTarget, suite: TestSuite) -> str:
    """Human-readable report name for a target run."""
    match target.type:
        case TargetType.SUITE:
            return suite.suite_name
        case TargetType.TEST_CASE:
            return f"{target.test_case_name} ({suite.suite_name})"
        case TargetType.TEST_DATA:
            return f"{target.test_data_name} ({target.test_case_name} > {suite.suite_name})"
        case _:
            raise ValueError(f"Unknown target type: {target.type}")


class RunController:
    """
    Top-level entry point for test runs.

    Usage:
        controller = RunController(load_runner_config())
        controller.run(target="s1:Checkout")
    """

    def __init__(
        self,
        config: RunnerSettings | None = None,
        store: VariableStore | None = None,
        environment: dict[str, str] | None = None,
        custom_steps: CustomStepRegistry | None = None,
        client: httpx.Client | None = None,
        db_client: DatabaseClient | None = None,
        session_factory: Callable[..., BrowserSession] = BrowserSession,
    ) -> None:
        self._config = config or load_runner_config()
        self._environment = (
            environment if environment is not None else load_environment(self._config.env_dir)
        )
        self._store = store or VariableStore(
            VariableRegistry(self._config.variables_file),
            persist_runtime_variables=self._config.persist_runtime_variables,
        )
        if custom_steps is None:
            custom_steps = CustomStepRegistry()
            load_custom_step_modules(custom_steps, self._config.custom_step_modules)
        self._custom_steps = custom_steps
        self._client = client
        self._db_client = db_client or DatabaseClient()
        self._session_factory = session_factory
        self._loader = SuiteLoader()
        self._log = logger.bind(component="run_controller")

    @property
    def config(self) -> RunnerSettings:
        return self._config

    @property
    def store(self) -> VariableStore:
        return self._store

    def discover_suite_files(self) -> list[Path]:
        suites_dir = Path(self._config.suites_dir)
        if not suites_dir.is_dir():
            raise SuiteLoadError(f"Suites directory not found: {suites_dir}")
        return sorted(p for p in suites_dir.glob("*.json") if not p.name.startswith("."))

    def find_suite_file(self, suite_id: str | None, suite_name: str | None) -> Path | None:
        """First suite file whose id or name matches; unparseable files are skipped."""
        for path, suite in self._loader.iter_suite_files(self._config.suites_dir):
            if suite.matches(suite_id, suite_name):
                return path
        return None

    def run_target(
        self,
        file_path: str | Path,
        target: ExecutionTarget,
        filters: Mapping[str, str] | None = None,
        run_id: str | None = None,
    ) -> RunSummary | None:
        """
        Run one target from a suite file.

        Returns None when the suite does not match the target or the filters.

        Raises:
            SuiteLoadError: If the suite file cannot be loaded
        """
        suite = self._loader.load_file(file_path)
        log = self._log.bind(suite=suite.suite_name, suite_id=suite.id, target=target.describe())

        if not suite.matches(target.suite_id, target.suite_name):
            log.info(
                "Skipping suite, target mismatch",
                expected=f"{target.suite_id}:{target.suite_name}",
                found=f"{suite.id}:{suite.suite_name}",
            )
            return None

        if filters and not suite_matches_filters(suite, filters):
            log.info("Skipping suite, filters did not match", filters=describe_filters(filters))
            return None

        reporter = Reporter(self._config.reports_dir)
        reporter.start(describe_target(target, suite), suite.merged_tags(), run_id)
        runner = TestRunner(
            reporter,
            self._store,
            self._config,
            client=self._client,
            db_client=self._db_client,
            environment=self._environment,
            custom_steps=self._custom_steps,
            session_factory=self._session_factory,
        )

        try:
            match target.type:
                case TargetType.SUITE:
                    runner.execute_suite(suite)
                case TargetType.TEST_CASE:
                    runner.execute_test_case(suite, target)
                case TargetType.TEST_DATA:
                    runner.execute_test_data(suite, target)
        except Exception as e:
            log.error("Execution failed", error=str(e), error_type=type(e).__name__)
            reporter.add_error(str(e))
        finally:
            runner.close()
            reporter.write_report_to_file()

        summary = reporter.summary()
        Reporter.print_summary(summary)
        return summary

    def run_suite_file(
        self,
        file_path: str | Path,
        filters: Mapping[str, str] | None = None,
        run_id: str | None = None,
    ) -> RunSummary | None:
        """Run a whole suite file."""
        suite = self._loader.load_file(file_path)
        return self.run_target(
            file_path, ExecutionTarget.for_suite(suite.id, suite.suite_name), filters, run_id
        )

    async def run_all_suites_parallel(
        self,
        filters: Mapping[str, str] | None = None,
    ) -> ParallelRunResult:
        """Run every suite file, at most ``max_parallel_suites`` at a time."""
        files = self.discover_suite_files()
        run_id = generate_run_name()
        max_parallel = self._config.max_parallel_suites
        semaphore = asyncio.Semaphore(max_parallel)
        start = time.monotonic()

        self._log.info(
            "Starting run",
            run_id=run_id,
            suite_files=len(files),
            max_parallel=max_parallel,
            filters=describe_filters(filters) if filters else None,
        )

        async def run_one(path: Path) -> RunSummary | None:
            async with semaphore:
                return await asyncio.to_thread(self.run_suite_file, path, filters, run_id)

        outcomes = await asyncio.gather(*(run_one(p) for p in files), return_exceptions=True)

        result = ParallelRunResult(run_id=run_id, max_parallel=max_parallel)
        for path, outcome in zip(files, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self._log.error("Suite run raised exception", path=str(path), error=str(outcome))
                result.failed_suites[str(path)] = str(outcome)
            elif outcome is None:
                result.skipped_suites.append(str(path))
            else:
                result.summaries.append(outcome)

        result.duration_ms = int((time.monotonic() - start) * 1000)
        self._log.info(
            "Run completed",
            run_id=run_id,
            suites_run=len(result.summaries),
            suites_skipped=len(result.skipped_suites),
            suites_failed=len(result.failed_suites),
            max_parallel=max_parallel,
            duration_ms=result.duration_ms,
        )
        return result

    def run(
        self,
        target: ExecutionTarget | str | None = None,
        file: str | Path | None = None,
        filters: Mapping[str, str] | None = None,
    ) -> RunSummary | ParallelRunResult | None:
        """
        Run a target, a file, or everything.

        Local variables are wiped when the run ends, whatever its outcome.

        Raises:
            TargetFormatError: If a target string cannot be parsed
            SuiteNotFoundError: If no suite file matches the target
            SuiteLoadError: If a suite file cannot be loaded
        """
        if isinstance(target, str):
            target = parse_execution_target(target)

        try:
            if target is None and file is None:
                return asyncio.run(self.run_all_suites_parallel(filters))

            run_id = generate_run_name()
            if file is not None:
                if target is None:
                    return self.run_suite_file(file, filters, run_id)
                return self.run_target(file, target, filters, run_id)

            path = self.find_suite_file(target.suite_id, target.suite_name)
            if path is None:
                raise SuiteNotFoundError(target)
            return self.run_target(path, target, filters, run_id)
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        """Wipe local variables from memory and the registry."""
        try:
            self._store.cleanup_local()
        except OSError as e:
            self._log.warning("Failed to clean up local variables", error=str(e))
