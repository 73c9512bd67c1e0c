"""Pytest fixtures for suiterunner tests."""

from __future__ import annotations

import json
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from suiterunner.config import RunnerSettings
from suiterunner.reporting.reporter import Reporter
from suiterunner.runner.session import BrowserSession, RetryPolicy
from suiterunner.variables.registry import VariableRegistry
from suiterunner.variables.store import VariableScope, VariableStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir: Path) -> RunnerSettings:
    """Runner settings rooted in the temp directory, with instant retries."""
    return RunnerSettings(
        suites_dir=temp_dir / "testSuites",
        reports_dir=temp_dir / "reports",
        artifacts_dir=temp_dir / "artifacts",
        data_dir=temp_dir / "data",
        variables_file=temp_dir / "variables.json",
        step_retry_attempts=3,
        step_retry_delay_ms=0,
    )


@pytest.fixture
def registry(temp_dir: Path) -> VariableRegistry:
    return VariableRegistry(temp_dir / "variables.json")


@pytest.fixture
def store(registry: VariableRegistry) -> VariableStore:
    return VariableStore(registry)


@pytest.fixture
def scope(store: VariableStore) -> VariableScope:
    return store.scope("suite-1", "tc-1")


@pytest.fixture
def reporter(temp_dir: Path) -> Reporter:
    reporter = Reporter(temp_dir / "reports")
    reporter.start("Sample Suite", {"env": "qa"}, "Run #1")
    return reporter


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Retry policy that never sleeps."""
    return RetryPolicy(max_attempts=3, delay_ms=0, sleep=lambda _: None)


@pytest.fixture
def sample_api_suite() -> dict[str, Any]:
    """Sample API suite document."""
    return {
        "id": "api-1",
        "suiteName": "Users API",
        "applicationName": "Customer Portal",
        "type": "API",
        "baseUrl": "https://api.example.com",
        "tags": [{"env": "qa"}, {"layer": "api"}],
        "testCases": [
            {
                "id": "tc-1",
                "name": "Get user",
                "type": "REST",
                "testData": [
                    {
                        "name": "Existing user",
                        "method": "get",
                        "endpoint": "/users/{{userId}}",
                        "assertions": [
                            {"type": "statusCode", "expected": 200},
                            {"type": "equals", "jsonPath": "$.name", "expected": "Ada"},
                        ],
                        "store": {"userName": "$.name"},
                    },
                    {
                        "name": "Missing user",
                        "endpoint": "/users/missing",
                        "assertions": [{"type": "statusCode", "expected": 404}],
                    },
                ],
            },
            {
                "id": "tc-2",
                "name": "Create user",
                "type": "REST",
                "testData": [
                    {
                        "name": "Valid body",
                        "method": "POST",
                        "endpoint": "/users",
                        "headers": {"Content-Type": "application/json"},
                        "body": {"name": "{{userName}}"},
                        "assertions": [{"type": "statusCode", "expected": 201}],
                    }
                ],
            },
        ],
    }


@pytest.fixture
def sample_ui_suite() -> dict[str, Any]:
    """Sample UI suite document."""
    return {
        "id": "ui-1",
        "suiteName": "Login UI",
        "applicationName": "Customer Portal",
        "type": "UI",
        "baseUrl": "https://app.example.com",
        "tags": [{"env": "qa"}, {"layer": "ui"}],
        "testCases": [
            {
                "id": "ui-tc-1",
                "name": "Login",
                "type": "UI",
                "testSteps": [
                    {"id": "s1", "keyword": "goto", "value": "/login"},
                    {
                        "id": "s2",
                        "keyword": "fill",
                        "locator": {"strategy": "label", "value": "Username"},
                        "value": "{{username}}",
                    },
                    {
                        "id": "s3",
                        "keyword": "click",
                        "locator": {
                            "strategy": "role",
                            "value": "button",
                            "options": {"name": "Sign in"},
                        },
                    },
                ],
            }
        ],
    }


@pytest.fixture
def suites_dir(
    settings: RunnerSettings,
    sample_api_suite: dict[str, Any],
    sample_ui_suite: dict[str, Any],
) -> Path:
    """Suites directory holding the sample API and UI suites."""
    path = Path(settings.suites_dir)
    path.mkdir(parents=True, exist_ok=True)
    (path / "users-api.json").write_text(json.dumps(sample_api_suite))
    (path / "login-ui.json").write_text(json.dumps(sample_ui_suite))
    return path


@pytest.fixture
def mock_page() -> MagicMock:
    """Create a mock Playwright page."""
    page = MagicMock(name="page")
    page.url = "https://app.example.com/login"
    page.title.return_value = "Login"
    page.is_closed.return_value = False
    page.screenshot.return_value = b"fake_image_data"
    return page


@pytest.fixture
def mock_context(mock_page: MagicMock) -> MagicMock:
    context = MagicMock(name="context")
    context.pages = [mock_page]
    context.new_page.return_value = mock_page
    return context


@pytest.fixture
def mock_browser(mock_context: MagicMock) -> MagicMock:
    """Create a mock Playwright browser."""
    browser = MagicMock(name="browser")
    browser.new_context.return_value = mock_context
    return browser


@pytest.fixture
def mock_playwright(mock_browser: MagicMock) -> MagicMock:
    """Mock of the object ``sync_playwright().start()`` returns."""
    playwright = MagicMock(name="playwright")
    playwright.chromium.launch.return_value = mock_browser
    return playwright


@pytest.fixture
def session_factory(mock_playwright: MagicMock):
    """BrowserSession factory that launches the mock Playwright stack."""

    def factory(**kwargs: Any) -> BrowserSession:
        starter = MagicMock()
        starter.start.return_value = mock_playwright
        return BrowserSession(playwright_factory=lambda: starter, **kwargs)

    return factory


@pytest.fixture
def open_session(session_factory) -> BrowserSession:
    session = session_factory(headless=True)
    session.open()
    return session


class FakeCell:
    """Table cell stand-in with Playwright's locator surface."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.clicks = 0

    def inner_text(self) -> str:
        return self.text

    def click(self) -> None:
        self.clicks += 1


class FakeLocator:
    """List-backed stand-in for a multi-element Playwright locator."""

    def __init__(self, items: list[Any]) -> None:
        self.items = list(items)

    def count(self) -> int:
        return len(self.items)

    def nth(self, index: int) -> Any:
        return self.items[index]

    @property
    def first(self) -> Any:
        return self.items[0] if self.items else FakeRow([])

    def all_inner_texts(self) -> list[str]:
        return [item.inner_text() for item in self.items]

    def filter(self, has_text: str) -> FakeLocator:
        return FakeLocator([item for item in self.items if has_text in item.inner_text()])


class FakeRow:
    def __init__(self, cells: list[str], header: bool = False) -> None:
        self.cells = [FakeCell(c) for c in cells]
        self.header = header

    def locator(self, selector: str) -> FakeLocator:
        if selector == "th":
            return FakeLocator(self.cells if self.header else [])
        return FakeLocator(self.cells)

    def inner_text(self) -> str:
        return "\t".join(c.text for c in self.cells)


class FakeTable:
    """
    Minimal HTML table answering the selectors the table helpers use.

    ``thead``/``tbody`` toggle whether those sections exist.
    """

    def __init__(
        self,
        headers: list[str],
        rows: list[list[str]],
        thead: bool = True,
        tbody: bool = True,
    ) -> None:
        self.header_row = FakeRow(headers, header=True) if headers else None
        self.body = [FakeRow(r) for r in rows]
        self.thead = thead
        self.tbody = tbody

    def locator(self, selector: str) -> FakeLocator:
        if selector == "thead th":
            cells = self.header_row.cells if self.thead and self.header_row else []
            return FakeLocator(cells)
        if selector == "tbody tr":
            return FakeLocator(self.body if self.tbody else [])
        if selector == "tr":
            return FakeLocator(([self.header_row] if self.header_row else []) + self.body)
        raise AssertionError(f"Unexpected selector: {selector}")


@pytest.fixture
def users_table() -> FakeTable:
    """A users table with a thead and three body rows."""
    return FakeTable(
        ["Name", "Email", "Role"],
        [
            ["Ada", "ada@example.com", "admin"],
            ["Grace", "grace@example.com", "editor"],
            ["Linus", "linus@example.com", "editor"],
        ],
    )
