"""
Browser session and step retry policy.

A UI test case owns one ``BrowserSession``. Its active page is a single
cursor that only ``switch_active_page`` moves.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from playwright.sync_api import Browser, BrowserContext, Page, Playwright

    from suiterunner.config import RunnerSettings

logger = structlog.get_logger(__name__)

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with a fixed delay and an optional backoff multiplier.

    The delay before attempt ``n + 1`` is ``delay_ms * backoff ** (n - 1)``.
    """

    max_attempts: int = 3
    delay_ms: int = 1000
    backoff: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")

    @classmethod
    def from_settings(cls, config: RunnerSettings) -> RetryPolicy:
        return cls(
            max_attempts=config.step_retry_attempts,
            delay_ms=config.step_retry_delay_ms,
            backoff=config.step_retry_backoff,
        )

    def delay_for(self, attempt: int) -> int:
        """Delay in milliseconds after failed ``attempt`` (1-based)."""
        return int(self.delay_ms * (self.backoff ** max(attempt - 1, 0)))

    def wait(self, attempt: int) -> None:
        delay = self.delay_for(attempt)
        if delay > 0:
            self.sleep(delay / 1000)


class BrowserSession:
    """
    Playwright browser, context and active page for one UI test case.

    Usage:
        session = BrowserSession(headless=True)
        session.open()
        session.page.goto("https://example.com")
        session.close()
    """

    def __init__(
        self,
        headless: bool = True,
        browser_type: str = "chromium",
        viewport: dict[str, int] | None = None,
        playwright_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._headless = headless
        self._browser_type = browser_type
        self._viewport = viewport or dict(DEFAULT_VIEWPORT)
        self._playwright_factory = playwright_factory
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._log = logger.bind(component="browser_session", browser=browser_type)

    @classmethod
    def attach(cls, browser: Any, context: Any, page: Any) -> BrowserSession:
        """Wrap already-open browser objects (the session does not own Playwright)."""
        session = cls()
        session._browser = browser
        session._context = context
        session._page = page
        return session

    @property
    def is_open(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not open")
        return self._page

    @property
    def browser(self) -> Browser | None:
        return self._browser

    @property
    def context(self) -> BrowserContext | None:
        return self._context

    @property
    def pages(self) -> list[Page]:
        if self._context is None:
            return [self._page] if self._page is not None else []
        return list(self._context.pages)

    def open(self) -> Page:
        """Launch the browser if needed and return the active page."""
        if self._page is not None:
            return self._page

        if self._playwright_factory is None:
            from playwright.sync_api import sync_playwright

            self._playwright_factory = sync_playwright

        self._playwright = self._playwright_factory().start()
        launcher = getattr(self._playwright, self._browser_type)
        self._browser = launcher.launch(headless=self._headless)
        self._context = self._browser.new_context(viewport=self._viewport)
        self._page = self._context.new_page()
        self._log.info("Browser session opened", headless=self._headless)
        return self._page

    def switch_active_page(self, page: Page) -> Page:
        """Move the active-page cursor."""
        self._page = page
        page.bring_to_front()
        self._log.debug("Switched active page", url=page.url)
        return page

    def new_page(self) -> Page:
        if self._context is None:
            raise RuntimeError("Browser session is not open")
        return self.switch_active_page(self._context.new_page())

    def close_active_page(self) -> None:
        """Close the active page and fall back to the last remaining one."""
        page = self.page
        page.close()
        remaining = [p for p in self.pages if p is not page and not p.is_closed()]
        if remaining:
            self.switch_active_page(remaining[-1])
        else:
            self._page = None

    def close(self) -> None:
        """Close everything the session owns; safe to call more than once."""
        browser, playwright = self._browser, self._playwright
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

        if browser is not None:
            try:
                browser.close()
            except Exception as e:
                self._log.warning("Failed to close browser", error=str(e))
        if playwright is not None:
            try:
                playwright.stop()
            except Exception as e:
                self._log.warning("Failed to stop Playwright", error=str(e))
