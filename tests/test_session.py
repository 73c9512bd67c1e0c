"""Tests for the browser session and retry policy."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from suiterunner.config import RunnerSettings
from suiterunner.runner.session import DEFAULT_VIEWPORT, BrowserSession, RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delay_with_backoff(self) -> None:
        policy = RetryPolicy(max_attempts=4, delay_ms=100, backoff=2.0)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [100, 200, 400]

    def test_wait_sleeps_seconds(self) -> None:
        sleeps: list[float] = []
        policy = RetryPolicy(delay_ms=250, sleep=sleeps.append)

        policy.wait(1)

        assert sleeps == [0.25]

    def test_zero_delay_does_not_sleep(self) -> None:
        sleeps: list[float] = []
        RetryPolicy(delay_ms=0, sleep=sleeps.append).wait(1)
        assert sleeps == []

    def test_validation(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_from_settings(self) -> None:
        policy = RetryPolicy.from_settings(
            RunnerSettings(step_retry_attempts=5, step_retry_delay_ms=10, step_retry_backoff=1.5)
        )
        assert (policy.max_attempts, policy.delay_ms, policy.backoff) == (5, 10, 1.5)


class TestBrowserSession:
    """Tests for BrowserSession."""

    def test_open(self, session_factory, mock_playwright: MagicMock, mock_browser: MagicMock, mock_page) -> None:
        session = session_factory(headless=False)

        page = session.open()

        mock_playwright.chromium.launch.assert_called_once_with(headless=False)
        mock_browser.new_context.assert_called_once_with(viewport=DEFAULT_VIEWPORT)
        assert page is mock_page
        assert session.is_open

    def test_open_is_idempotent(self, open_session: BrowserSession, mock_playwright: MagicMock) -> None:
        open_session.open()
        assert mock_playwright.chromium.launch.call_count == 1

    def test_other_browser_type(self, session_factory, mock_playwright: MagicMock) -> None:
        mock_playwright.firefox.launch.return_value = mock_playwright.chromium.launch.return_value
        session_factory(browser_type="firefox").open()
        mock_playwright.firefox.launch.assert_called_once_with(headless=True)

    def test_page_requires_open(self) -> None:
        with pytest.raises(RuntimeError, match="not open"):
            _ = BrowserSession().page

    def test_close(self, open_session: BrowserSession, mock_browser: MagicMock, mock_playwright: MagicMock) -> None:
        open_session.close()
        open_session.close()

        mock_browser.close.assert_called_once()
        mock_playwright.stop.assert_called_once()
        assert not open_session.is_open

    def test_close_tolerates_errors(self, open_session: BrowserSession, mock_browser: MagicMock, mock_playwright: MagicMock) -> None:
        mock_browser.close.side_effect = RuntimeError("already closed")

        open_session.close()

        mock_playwright.stop.assert_called_once()

    def test_switch_and_close_active_page(self, mock_browser: MagicMock, mock_context: MagicMock) -> None:
        first, second = MagicMock(name="first"), MagicMock(name="second")
        first.is_closed.return_value = False
        mock_context.pages = [first, second]
        session = BrowserSession.attach(mock_browser, mock_context, first)

        session.switch_active_page(second)
        assert session.page is second
        second.bring_to_front.assert_called_once()

        session.close_active_page()
        second.close.assert_called_once()
        assert session.page is first

    def test_close_last_page(self, mock_browser: MagicMock, mock_context: MagicMock, mock_page: MagicMock) -> None:
        session = BrowserSession.attach(mock_browser, mock_context, mock_page)

        session.close_active_page()

        assert not session.is_open

    def test_new_page(self, open_session: BrowserSession, mock_context: MagicMock) -> None:
        fresh = MagicMock(name="fresh")
        mock_context.new_page.return_value = fresh

        assert open_session.new_page() is fresh
        assert open_session.page is fresh
