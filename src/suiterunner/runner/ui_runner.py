"""
UI step interpreter.

Runs the steps of a UI test case against one browser session and records a
single report entry for the whole test case, with a step result per step.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from suiterunner.dsl.models import TestCase, TestStep
from suiterunner.reporting.reporter import ReportEntry, ResultStatus, StepResult
from suiterunner.runner.custom_steps import CustomStepRegistry
from suiterunner.runner.keywords import KeywordDispatcher
from suiterunner.runner.session import BrowserSession, RetryPolicy

if TYPE_CHECKING:
    from suiterunner.config import RunnerSettings
    from suiterunner.reporting.reporter import Reporter
    from suiterunner.variables.store import VariableScope, VariableStore

logger = structlog.get_logger(__name__)

UI_DATA_SET = "UI Steps"


class InvalidTestCaseError(ValueError):
    """Raised for a test case that is not UI or has no steps."""

    def __init__(self, test_case_name: str) -> None:
        self.test_case_name = test_case_name
        super().__init__(f"Invalid UI test case: {test_case_name}")


class UIRunner:
    """
    Executes UI test cases step by step.

    Features:
    - Disabled steps are reported SKIPPED without running
    - Sticky skip: after any failure, later ``skipOnFailure`` steps are SKIPPED
    - Bounded retries per step (``RetryPolicy``), re-injecting variables each attempt
    - Screenshot capture after a step's final failed attempt

    Usage:
        runner = UIRunner(reporter, store, config)
        runner.init()
        try:
            runner.run_test_case(test_case)
        finally:
            runner.close()
    """

    def __init__(
        self,
        reporter: Reporter,
        store: VariableStore,
        config: RunnerSettings,
        session_factory: Callable[..., BrowserSession] = BrowserSession,
        custom_steps: CustomStepRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        base_url: str = "",
    ) -> None:
        self._reporter = reporter
        self._store = store
        self._config = config
        self._session_factory = session_factory
        self._custom_steps = custom_steps or CustomStepRegistry()
        self._retry = retry_policy or RetryPolicy.from_settings(config)
        self._base_url = base_url
        self._screenshot_dir = Path(config.artifacts_dir) / "screenshots"
        self._session: BrowserSession | None = None
        self._log = logger.bind(component="ui_runner")

    @property
    def session(self) -> BrowserSession | None:
        return self._session

    def init(self, headless: bool | None = None) -> BrowserSession:
        """Create and open the browser session."""
        if self._session is None:
            self._session = self._session_factory(
                headless=self._config.headless if headless is None else headless,
                browser_type=self._config.browser_type,
            )
        self._session.open()
        return self._session

    def close(self) -> None:
        """Close the browser session; safe to call more than once."""
        if self._session is not None:
            self._session.close()
            self._session = None

    def run_test_case(
        self,
        test_case: TestCase,
        scope: VariableScope | None = None,
    ) -> ReportEntry:
        """
        Run every step of a UI test case and record one report entry.

        Raises:
            InvalidTestCaseError: If the test case is not UI or has no steps
        """
        if not test_case.is_ui or not test_case.test_steps:
            raise InvalidTestCaseError(test_case.name)
        if self._session is None:
            self.init()

        scope = scope or self._store.scope("", test_case.id or test_case.name)
        dispatcher = KeywordDispatcher(
            self._session,
            scope,
            self._config,
            custom_steps=self._custom_steps,
            base_url=self._base_url,
        )
        log = self._log.bind(test_case=test_case.name)
        log.info("Running UI test case", steps=len(test_case.test_steps))

        start = time.monotonic()
        step_results: list[StepResult] = []
        errors: list[str] = []
        has_failure = False

        for index, step in enumerate(test_case.test_steps):
            if not step.enabled:
                step_results.append(self._skipped(step))
                log.debug("Step disabled", step_id=step.id, keyword=str(step.keyword))
                continue

            if has_failure and step.skip_on_failure:
                step_results.append(self._skipped(step))
                log.info("Skipping step after earlier failure", step_id=step.id, keyword=str(step.keyword))
                continue

            result = self._execute_step(dispatcher, test_case, step, index)
            step_results.append(result)
            if result.status == ResultStatus.FAIL:
                has_failure = True
                errors.append(f"Step {step.id} ({step.keyword}): {result.error}")

        passed = sum(1 for r in step_results if r.status == ResultStatus.PASS)
        failed = sum(1 for r in step_results if r.status == ResultStatus.FAIL)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        entry = ReportEntry(
            test_case=test_case.name,
            data_set=UI_DATA_SET,
            status=ResultStatus.FAIL if failed else ResultStatus.PASS,
            error=" | ".join(errors) if errors else None,
            assertions_passed=passed,
            assertions_failed=failed,
            response_time_ms=elapsed_ms,
            step_results=step_results,
        )
        self._reporter.add(entry)
        log.info(
            "UI test case finished",
            status=str(entry.status),
            passed=passed,
            failed=failed,
            skipped=len(step_results) - passed - failed,
            duration_ms=elapsed_ms,
        )
        return entry

    @staticmethod
    def _locator_dict(step: TestStep) -> dict[str, Any] | None:
        if step.locator is not None:
            return step.locator.model_dump(mode="json", by_alias=True, exclude_none=True)
        if step.target:
            return {"strategy": "css", "value": step.target}
        return None

    def _skipped(self, step: TestStep) -> StepResult:
        return StepResult(
            step_id=step.id,
            keyword=str(step.keyword),
            status=ResultStatus.SKIPPED,
            locator=self._locator_dict(step),
            value=step.value,
        )

    def _execute_step(
        self,
        dispatcher: KeywordDispatcher,
        test_case: TestCase,
        step: TestStep,
        index: int,
    ) -> StepResult:
        start = time.monotonic()
        last_error: Exception | None = None
        attempt = 0

        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                dispatcher.run(step)
                return StepResult(
                    step_id=step.id,
                    keyword=str(step.keyword),
                    status=ResultStatus.PASS,
                    execution_time_ms=int((time.monotonic() - start) * 1000),
                    locator=self._locator_dict(step),
                    value=step.value,
                    attempts=attempt,
                )
            except Exception as e:
                last_error = e
                if attempt < self._retry.max_attempts:
                    self._log.debug(
                        "Step failed, retrying",
                        step_id=step.id,
                        keyword=str(step.keyword),
                        attempt=attempt,
                        max_attempts=self._retry.max_attempts,
                        delay_ms=self._retry.delay_for(attempt),
                        error=str(e),
                    )
                    self._retry.wait(attempt)

        self._log.error(
            "Step failed",
            test_case=test_case.name,
            step_id=step.id,
            keyword=str(step.keyword),
            attempts=attempt,
            error=str(last_error),
        )
        return StepResult(
            step_id=step.id,
            keyword=str(step.keyword),
            status=ResultStatus.FAIL,
            execution_time_ms=int((time.monotonic() - start) * 1000),
            locator=self._locator_dict(step),
            value=step.value,
            error=str(last_error) if last_error else "Unknown error",
            screenshot_path=self._capture_failure_screenshot(test_case.name, step, index),
            attempts=attempt,
        )

    def _capture_failure_screenshot(self, test_name: str, step: TestStep, index: int) -> str | None:
        """Best-effort screenshot of the active page."""
        if self._session is None or not self._session.is_open:
            return None
        try:
            safe_name = re.sub(r"[^\w\-]", "_", test_name)
            timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
            self._screenshot_dir.mkdir(parents=True, exist_ok=True)
            path = self._screenshot_dir / f"failure_{safe_name}_{step.id or index}_{timestamp}.png"
            self._session.page.screenshot(path=str(path))
            self._log.info("Captured failure screenshot", path=str(path))
            return str(path)
        except Exception as e:
            self._log.warning("Failed to capture failure screenshot", error=str(e))
            return None
