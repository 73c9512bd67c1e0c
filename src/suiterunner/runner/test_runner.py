"""
Suite, test case and test-data dispatch.

``TestRunner`` routes a resolved target to the API executor or the UI
interpreter. UI test cases each get their own browser session.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
import structlog

from suiterunner.api.executor import ApiExecutor, resolve_base_url
from suiterunner.dsl.models import SuiteType, TestCase, TestSuite
from suiterunner.reporting.reporter import ReportEntry, ResultStatus
from suiterunner.runner.custom_steps import CustomStepRegistry
from suiterunner.runner.session import BrowserSession, RetryPolicy
from suiterunner.runner.ui_runner import UI_DATA_SET, InvalidTestCaseError, UIRunner

if TYPE_CHECKING:
    from suiterunner.config import RunnerSettings
    from suiterunner.db.client import DatabaseClient
    from suiterunner.orchestrator.target import ExecutionTarget
    from suiterunner.reporting.reporter import Reporter
    from suiterunner.variables.store import VariableStore

logger = structlog.get_logger(__name__)


class TargetNotFoundError(LookupError):
    """The target's test case or test-data item does not exist in the suite."""


class UnsupportedTargetError(ValueError):
    """The target kind cannot run against this suite (test data on a UI suite)."""


class TestRunner:
    """
    Dispatches targets to ``ApiExecutor`` and ``UIRunner``.

    Usage:
        with TestRunner(reporter, store, config) as runner:
            runner.execute_suite(suite)
    """

    __test__ = False

    def __init__(
        self,
        reporter: Reporter,
        store: VariableStore,
        config: RunnerSettings,
        client: httpx.Client | None = None,
        db_client: DatabaseClient | None = None,
        environment: dict[str, str] | None = None,
        custom_steps: CustomStepRegistry | None = None,
        session_factory: Callable[..., BrowserSession] = BrowserSession,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._reporter = reporter
        self._store = store
        self._config = config
        self._environment = environment or {}
        self._custom_steps = custom_steps or CustomStepRegistry()
        self._session_factory = session_factory
        self._retry_policy = retry_policy
        self._api = ApiExecutor(
            reporter,
            store,
            config,
            client=client,
            db_client=db_client,
            environment=self._environment,
        )
        self._log = logger.bind(component="test_runner")

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> TestRunner:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def execute_suite(self, suite: TestSuite) -> None:
        """Run every test case of a suite in order."""
        self._log.info("Running suite", suite=suite.suite_name, suite_id=suite.id, type=str(suite.type))
        for test_case in suite.test_cases:
            self._run_test_case(suite, test_case)

    def execute_test_case(self, suite: TestSuite, target: ExecutionTarget) -> None:
        """Run the single test case the target names."""
        test_case = suite.find_test_case(target.test_case_id, target.test_case_name)
        if test_case is None:
            raise TargetNotFoundError(
                f"TestCase not found: {target.test_case_id}:{target.test_case_name}"
            )
        self._log.info("Running test case", suite=suite.suite_name, test_case=test_case.name)
        self._run_test_case(suite, test_case)

    def execute_test_data(self, suite: TestSuite, target: ExecutionTarget) -> None:
        """Run one test-data item of an API test case."""
        if suite.type != SuiteType.API:
            raise UnsupportedTargetError("TestData execution only supported for API suites")

        test_case = suite.find_test_case(target.test_case_id, target.test_case_name)
        if test_case is None or not test_case.is_api:
            raise TargetNotFoundError(
                f"API TestCase not found: {target.test_case_id}:{target.test_case_name}"
            )

        index = target.test_data_index
        if index is None or index < 0 or index >= len(test_case.test_data):
            raise TargetNotFoundError(f"TestData not found at index {index}")

        data = test_case.test_data[index]
        self._log.info("Running test data", test_case=test_case.name, data_set=data.name, index=index)
        self._api.execute_test_data(suite, test_case, data)

    def _run_test_case(self, suite: TestSuite, test_case: TestCase) -> None:
        if test_case.is_ui or suite.type == SuiteType.UI:
            self._run_ui_test_case(suite, test_case)
        else:
            self._api.execute_test_case(suite, test_case)

    def _run_ui_test_case(self, suite: TestSuite, test_case: TestCase) -> None:
        if not test_case.is_ui or not test_case.test_steps:
            error = InvalidTestCaseError(test_case.name)
            self._log.error("Skipping invalid UI test case", test_case=test_case.name, error=str(error))
            self._reporter.add(
                ReportEntry(
                    test_case=test_case.name,
                    data_set=UI_DATA_SET,
                    status=ResultStatus.FAIL,
                    error=str(error),
                )
            )
            return
        runner = UIRunner(
            self._reporter,
            self._store,
            self._config,
            session_factory=self._session_factory,
            custom_steps=self._custom_steps,
            retry_policy=self._retry_policy,
            base_url=resolve_base_url(suite, self._environment),
        )
        scope = self._store.scope(suite.id or suite.suite_name, test_case.id or test_case.name)
        try:
            try:
                runner.init()
            except Exception as e:
                self._log.error("Failed to open browser", test_case=test_case.name, error=str(e))
                self._reporter.add(
                    ReportEntry(
                        test_case=test_case.name,
                        data_set=UI_DATA_SET,
                        status=ResultStatus.FAIL,
                        error=f"Browser launch failed: {e}",
                    )
                )
                return
            runner.run_test_case(test_case, scope)
        finally:
            runner.close()
