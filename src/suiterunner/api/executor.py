"""
API request executor.

Runs the test-data items of REST and SOAP test cases:
- URL, header and body resolution with variable injection
- pre-processors
- the HTTP call (httpx)
- schema validation and JSONPath assertions (REST) or XPath assertions (SOAP)
- response variable storage

Every test-data item yields exactly one report entry.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from suiterunner.assertions.engine import (
    AssertionResult,
    JsonAssertionEngine,
    SchemaValidator,
    XPathAssertionEngine,
)
from suiterunner.db.config import DatabaseConfigError
from suiterunner.dsl.models import TestCase, TestCaseType, TestData, TestSuite
from suiterunner.reporting.reporter import ReportEntry, ResultStatus
from suiterunner.variables.preprocessor import PreProcessError, PreProcessor
from suiterunner.variables.store import VariableScope, VariableStoreError

if TYPE_CHECKING:
    from suiterunner.config import RunnerSettings
    from suiterunner.db.client import DatabaseClient
    from suiterunner.reporting.reporter import Reporter
    from suiterunner.variables.store import VariableStore

logger = structlog.get_logger(__name__)

SOAP_CONTENT_TYPE = "text/xml;charset=UTF-8"


class RequestLoadError(Exception):
    """Raised when a body or schema file cannot be loaded."""


def _header(headers: dict[str, str], name: str) -> str | None:
    lowered = name.lower()
    return next((v for k, v in headers.items() if k.lower() == lowered), None)


def is_soap_request(test_case: TestCase, headers: dict[str, str]) -> bool:
    """
    Classify a request as SOAP.

    True when the test case is typed SOAP, the Content-Type mentions xml or
    soap, or a SOAPAction header is present.
    """
    if test_case.type == TestCaseType.SOAP:
        return True
    content_type = (_header(headers, "Content-Type") or "").lower()
    if "xml" in content_type or "soap" in content_type:
        return True
    return _header(headers, "SOAPAction") is not None


def resolve_base_url(suite: TestSuite, environment: dict[str, str]) -> str:
    """An env var named by ``baseUrl`` wins over the literal, then ``BASE_URL``."""
    if suite.base_url and environment.get(suite.base_url):
        return environment[suite.base_url]
    return suite.base_url or environment.get("BASE_URL", "")


class ApiExecutor:
    """
    Executes API test cases against a live endpoint.

    Usage:
        with ApiExecutor(reporter, store, config) as executor:
            executor.execute_suite(suite)
    """

    def __init__(
        self,
        reporter: Reporter,
        store: VariableStore,
        config: RunnerSettings,
        client: httpx.Client | None = None,
        db_client: DatabaseClient | None = None,
        environment: dict[str, str] | None = None,
    ) -> None:
        self._reporter = reporter
        self._store = store
        self._config = config
        self._db_client = db_client
        self._environment = environment or {}
        self._json_engine = JsonAssertionEngine()
        self._xpath_engine = XPathAssertionEngine()
        self._schema_validator = SchemaValidator()
        self._schema_cache: dict[Path, dict[str, Any]] = {}
        self._log = logger.bind(component="api_executor")

        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            follow_redirects=True,
        )

    def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ApiExecutor:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def execute_suite(self, suite: TestSuite) -> None:
        """Run every API test case of a suite in order."""
        self._log.info("Running API suite", suite=suite.suite_name, suite_id=suite.id)
        for test_case in suite.test_cases:
            if not test_case.is_api:
                self._log.warning(
                    "Skipping non-API test case", suite=suite.suite_name, test_case=test_case.name
                )
                continue
            self.execute_test_case(suite, test_case)

    def execute_test_case(self, suite: TestSuite, test_case: TestCase) -> None:
        """Run every test-data item of one test case."""
        self._log.info("Running test case", suite=suite.suite_name, test_case=test_case.name)
        scope = self._store.scope(suite.id or suite.suite_name, test_case.id or test_case.name)
        for data in test_case.test_data:
            self.execute_test_data(suite, test_case, data, scope)

    def execute_test_data(
        self,
        suite: TestSuite,
        test_case: TestCase,
        data: TestData,
        scope: VariableScope | None = None,
    ) -> ReportEntry:
        """Run one test-data item and record its report entry."""
        scope = scope or self._store.scope(
            suite.id or suite.suite_name, test_case.id or test_case.name
        )
        try:
            entry = self._run(suite, test_case, data, scope)
        except Exception as e:
            self._log.exception(
                "Test data execution failed",
                test_case=test_case.name,
                data_set=data.name,
                error_type=type(e).__name__,
            )
            entry = self._fail_entry(test_case, data, f"Unexpected error: {e}")
        self._reporter.add(entry)
        return entry

    def _fail_entry(self, test_case: TestCase, data: TestData, error: str) -> ReportEntry:
        return ReportEntry(
            test_case=test_case.name,
            data_set=data.name,
            status=ResultStatus.FAIL,
            error=error,
        )

    def _run(
        self,
        suite: TestSuite,
        test_case: TestCase,
        data: TestData,
        scope: VariableScope,
    ) -> ReportEntry:
        log = self._log.bind(test_case=test_case.name, data_set=data.name)
        start = time.monotonic()

        url = scope.inject(resolve_base_url(suite, self._environment) + data.endpoint)

        try:
            PreProcessor(scope, self._db_client, self._config).run(data.pre_process)
        except (PreProcessError, DatabaseConfigError) as e:
            log.error("Pre-processing failed", error=str(e))
            return self._fail_entry(test_case, data, f"PreProcess failed: {e}")

        headers = {k: scope.inject(v) for k, v in data.headers.items()}
        soap = is_soap_request(test_case, headers)

        try:
            body = self._load_body(data, scope, soap)
        except RequestLoadError as e:
            log.error("Failed to load request body", body_file=data.body_file, error=str(e))
            return self._fail_entry(test_case, data, f"Failed to load bodyFile: {e}")

        try:
            schema = self._load_schema(data)
        except RequestLoadError as e:
            log.error("Failed to load response schema", schema_file=data.response_schema_file, error=str(e))
            return self._fail_entry(test_case, data, f"Failed to load responseSchemaFile: {e}")

        passed = 0
        failed = 0
        errors: list[str] = []
        response: httpx.Response | None = None
        response_data: Any = None
        method = "POST" if soap else data.method

        try:
            response = self._send(method, url, headers, body, soap)
            response_data = response.text if soap else self._decode(response)

            results: list[AssertionResult] = []
            if soap:
                results = self._xpath_engine.evaluate_all(data.assertions, response.text)
            else:
                if schema is not None:
                    schema_errors = self._schema_validator.validate(response_data, schema)
                    if schema_errors:
                        failed += 1
                        errors.append(f"Schema validation failed: {'; '.join(schema_errors)}")
                results = self._json_engine.evaluate_all(
                    data.assertions, response_data, response.status_code
                )

            for result in results:
                if result.passed:
                    passed += 1
                else:
                    failed += 1
                    errors.append(result.message)

            for store_map, local in ((data.store, False), (data.local_store, True)):
                if not store_map:
                    continue
                try:
                    scope.store_response(response_data, store_map, local=local, xml=soap)
                except VariableStoreError as e:
                    failed += 1
                    errors.append(f"Variable store failed: {e}")

        except (httpx.HTTPError, httpx.InvalidURL) as e:
            errors.append(f"Request error: {e}")
            log.error("Request failed", method=method, url=url, error=str(e))
        except Exception as e:
            errors.append(f"Unexpected error: {e}")
            log.exception("Test data execution failed", method=method, url=url, error_type=type(e).__name__)

        status = ResultStatus.FAIL if errors else ResultStatus.PASS
        elapsed_ms = int((time.monotonic() - start) * 1000)
        log.info(
            "Test data finished",
            status=str(status),
            passed=passed,
            failed=failed,
            status_code=response.status_code if response is not None else None,
            duration_ms=elapsed_ms,
        )

        return ReportEntry(
            test_case=test_case.name,
            data_set=data.name,
            status=status,
            error=" | ".join(errors) if errors else None,
            assertions_passed=passed,
            assertions_failed=failed,
            response_time_ms=elapsed_ms,
            response_body=(
                self._snapshot(response, response_data)
                if status == ResultStatus.FAIL and response is not None
                else None
            ),
            api_details={
                "method": method,
                "url": url,
                "protocol": "SOAP" if soap else "REST",
                "statusCode": response.status_code if response is not None else None,
            },
        )

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
        soap: bool,
    ) -> httpx.Response:
        if soap:
            request_headers = dict(headers)
            if _header(request_headers, "Content-Type") is None:
                request_headers["Content-Type"] = SOAP_CONTENT_TYPE
            content = body if isinstance(body, str) else json.dumps(body) if body is not None else ""
            return self._client.request(method, url, headers=request_headers, content=content)

        if body is None:
            return self._client.request(method, url, headers=headers)
        if isinstance(body, dict | list):
            return self._client.request(method, url, headers=headers, json=body)
        return self._client.request(method, url, headers=headers, content=str(body))

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _snapshot(response: httpx.Response, body: Any) -> dict[str, Any]:
        return {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": body,
        }

    def _resolve_path(self, relative: str) -> Path:
        path = Path(relative)
        if not path.is_absolute():
            path = Path(self._config.data_dir) / path
        return path.resolve()

    def _load_body(self, data: TestData, scope: VariableScope, soap: bool) -> Any:
        if data.body_file:
            path = self._resolve_path(data.body_file)
            try:
                raw = scope.inject(path.read_text(encoding="utf-8"))
            except OSError as e:
                raise RequestLoadError(str(e)) from e
            if soap:
                return raw
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise RequestLoadError(f"{path.name}: {e}") from e

        if data.body is None:
            return None
        return scope.inject_object(data.body)

    def _load_schema(self, data: TestData) -> dict[str, Any] | None:
        if data.response_schema_file:
            path = self._resolve_path(data.response_schema_file)
            if path not in self._schema_cache:
                try:
                    self._schema_cache[path] = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    raise RequestLoadError(str(e)) from e
            return self._schema_cache[path]
        return data.response_schema
