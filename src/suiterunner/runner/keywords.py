"""
Keyword dispatch for UI test steps.

``KeywordDispatcher.run(step)`` injects variables into a fresh copy of the
step, resolves its locator, and performs the keyword's action against the
session's active page. Extraction keywords return a value that ``store`` /
``localStore`` entries pick up through a fixed marker (``$text``, ...).
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import structlog
from playwright.sync_api import expect

from suiterunner.dsl.models import LocatorDefinition, StepKeyword, TestStep, coerce_text_pattern
from suiterunner.runner import tables
from suiterunner.runner.custom_steps import (
    CodeContext,
    ConsoleCapture,
    CustomStepContext,
    CustomStepRegistry,
)
from suiterunner.runner.locators import resolve_locator

if TYPE_CHECKING:
    from suiterunner.config import RunnerSettings
    from suiterunner.runner.session import BrowserSession
    from suiterunner.variables.store import VariableScope

logger = structlog.get_logger(__name__)

K = StepKeyword

DEFAULT_SCROLL_PIXELS = 500
MAXIMIZED_VIEWPORT = (1920, 1080)
MINIMIZED_VIEWPORT = (800, 600)


class StepConfigurationError(ValueError):
    """A step is missing the locator, value or option its keyword needs."""


class UnsupportedKeywordError(NotImplementedError):
    """The keyword is unknown or deliberately not implemented."""

    def __init__(self, keyword: str) -> None:
        self.keyword = keyword
        super().__init__(f"Unsupported keyword: {keyword}")


LOCATOR_REQUIRED = frozenset({
    K.CLICK, K.DBL_CLICK, K.RIGHT_CLICK, K.TYPE, K.FILL, K.CLEAR, K.SELECT,
    K.CHECK, K.UNCHECK, K.SET_CHECKED, K.HOVER, K.FOCUS, K.SCROLL_INTO_VIEW,
    K.DRAG_AND_DROP, K.UPLOAD_FILE, K.DOWNLOAD_FILE, K.WAIT_FOR_ELEMENT,
    K.GET_TEXT, K.GET_ATTRIBUTE, K.GET_VALUE, K.GET_COUNT,
    K.ASSERT_TEXT, K.ASSERT_HAVE_TEXT, K.ASSERT_CONTAINS_TEXT, K.ASSERT_VISIBLE,
    K.ASSERT_HIDDEN, K.ASSERT_ENABLED, K.ASSERT_DISABLED, K.ASSERT_CHECKED,
    K.ASSERT_UNCHECKED, K.ASSERT_COUNT, K.ASSERT_HAVE_COUNT, K.ASSERT_VALUE,
    K.ASSERT_ATTRIBUTE, K.WAIT_FOR_POPUP,
    K.GET_TABLE_CELL, K.GET_TABLE_ROW, K.GET_TABLE_COLUMN, K.ASSERT_TABLE_CELL,
    K.SORT_TABLE, K.FILTER_TABLE, K.FIND_TABLE_ROW,
})

VALUE_REQUIRED = frozenset({
    K.GOTO, K.TYPE, K.FILL, K.PRESS, K.SELECT, K.SET_CHECKED, K.SCROLL_TO,
    K.UPLOAD_FILE, K.WAIT_FOR, K.WAIT_FOR_TIMEOUT, K.WAIT_FOR_FUNCTION, K.WAIT_FOR_TEXT,
    K.GET_ATTRIBUTE, K.ASSERT_TEXT, K.ASSERT_HAVE_TEXT, K.ASSERT_CONTAINS_TEXT,
    K.ASSERT_COUNT, K.ASSERT_HAVE_COUNT, K.ASSERT_VALUE, K.ASSERT_ATTRIBUTE,
    K.ASSERT_URL, K.ASSERT_TITLE, K.SWITCH_TO_TAB, K.ASSERT_TABLE_CELL,
    K.FILTER_TABLE, K.FIND_TABLE_ROW,
})

EXTRACTION_MARKERS: dict[StepKeyword, str] = {
    K.GET_TEXT: "$text",
    K.GET_ATTRIBUTE: "$attribute",
    K.GET_TITLE: "$title",
    K.GET_URL: "$url",
    K.GET_VALUE: "$value",
    K.GET_COUNT: "$count",
    K.GET_TABLE_CELL: "$text",
    K.GET_TABLE_ROW: "$text",
    K.GET_TABLE_COLUMN: "$text",
    K.FILTER_TABLE: "$count",
    K.FIND_TABLE_ROW: "$value",
    K.DOWNLOAD_FILE: "$path",
}


def inject_step(step: TestStep, scope: VariableScope) -> TestStep:
    """Return a copy of ``step`` with value, options and locator strings injected."""
    update: dict[str, Any] = {
        "value": scope.inject(step.value) if step.value is not None else None,
        "options": scope.inject_object(step.options),
    }
    if step.target is not None:
        update["target"] = scope.inject(step.target)
    if step.locator is not None:
        raw = step.locator.model_dump(mode="json", by_alias=True, exclude_none=True)
        update["locator"] = LocatorDefinition.model_validate(scope.inject_object(raw))
    return step.model_copy(update=update)


def _parse_pair(text: str, separator: str, what: str) -> tuple[int, int]:
    parts = [p.strip() for p in text.lower().split(separator)]
    if len(parts) != 2:
        raise StepConfigurationError(f"Invalid {what} '{text}'")
    try:
        return int(float(parts[0])), int(float(parts[1]))
    except ValueError:
        raise StepConfigurationError(f"Invalid {what} '{text}'") from None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


class KeywordDispatcher:
    """
    Runs single steps against a ``BrowserSession``.

    Usage:
        dispatcher = KeywordDispatcher(session, scope, config)
        value = dispatcher.run(step)
    """

    def __init__(
        self,
        session: BrowserSession,
        scope: VariableScope,
        config: RunnerSettings,
        custom_steps: CustomStepRegistry | None = None,
        base_url: str = "",
        expect_fn: Callable[..., Any] = expect,
    ) -> None:
        self._session = session
        self._scope = scope
        self._config = config
        self._custom_steps = custom_steps or CustomStepRegistry()
        self._base_url = base_url
        self._expect = expect_fn
        self._log = logger.bind(component="keyword_dispatcher")

    @property
    def session(self) -> BrowserSession:
        return self._session

    def run(self, step: TestStep) -> Any:
        """
        Execute one step attempt.

        Raises:
            StepConfigurationError: If the step lacks a required locator or value
            UnsupportedKeywordError: If the keyword is unknown or unimplemented
        """
        step = inject_step(step, self._scope)
        keyword = step.keyword
        if not isinstance(keyword, StepKeyword):
            raise UnsupportedKeywordError(str(keyword))

        locator = self._resolve(step)
        if keyword in LOCATOR_REQUIRED and locator is None:
            raise StepConfigurationError(f"Keyword '{keyword}' requires a locator")
        if keyword in VALUE_REQUIRED and (step.value is None or step.value == ""):
            raise StepConfigurationError(f"Keyword '{keyword}' requires a value")

        result = self._dispatch(step, keyword, locator)

        marker = EXTRACTION_MARKERS.get(keyword)
        if marker is not None:
            self._store(step, marker, result)
        elif step.store or step.local_store:
            self._log.warning("Store entries ignored for non-extraction keyword", keyword=str(keyword))
        return result

    def _resolve(self, step: TestStep) -> Any:
        if not self._session.is_open:
            return None
        if step.locator is not None:
            return resolve_locator(step.locator, self._session.page)
        if step.target:
            return self._session.page.locator(step.target)
        return None

    def _store(self, step: TestStep, marker: str, value: Any) -> None:
        for store_map, local in ((step.store, False), (step.local_store, True)):
            for name, source in store_map.items():
                if source == marker:
                    self._scope.set(name, value, local=local)
                    self._log.debug("Stored step value", variable=name, marker=marker, local=local)
                else:
                    self._log.warning(
                        "Store entry ignored",
                        variable=name,
                        source=source,
                        expected_marker=marker,
                        keyword=str(step.keyword),
                    )

    def _timeout(self, step: TestStep) -> float:
        return float(step.options.get("timeout", self._config.assertion_timeout_ms))

    def _artifact_path(self, value: str | None, default_name: str) -> Path:
        path = Path(value) if value else Path(default_name)
        if not path.is_absolute():
            path = Path(self._config.artifacts_dir) / path
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def _dispatch(self, step: TestStep, keyword: StepKeyword, locator: Any) -> Any:
        if keyword in (K.OPEN_BROWSER, K.CLOSE_BROWSER):
            return self._browser_control(keyword)

        page = self._session.page
        value = step.value
        options = step.options
        timeout = self._timeout(step)

        match keyword:
            # Browser / page control
            case K.CLOSE_PAGE | K.CLOSE_TAB:
                self._session.close_active_page()
            case K.MAXIMIZE:
                width, height = MAXIMIZED_VIEWPORT
                page.set_viewport_size({
                    "width": int(options.get("width", width)),
                    "height": int(options.get("height", height)),
                })
            case K.MINIMIZE:
                width, height = MINIMIZED_VIEWPORT
                page.set_viewport_size({"width": width, "height": height})
            case K.SET_VIEWPORT_SIZE:
                if value:
                    width, height = _parse_pair(value, "x", "viewport size")
                elif "width" in options and "height" in options:
                    width, height = int(options["width"]), int(options["height"])
                else:
                    raise StepConfigurationError("setViewportSize requires 'WxH' or options width/height")
                page.set_viewport_size({"width": width, "height": height})
            case K.SCREENSHOT:
                path = self._artifact_path(value, f"screenshots/{step.id or 'step'}-{int(time.time() * 1000)}.png")
                page.screenshot(path=str(path), full_page=_as_bool(options.get("fullPage", False)))
                return str(path)

            # Navigation
            case K.GOTO:
                url = value if "://" in value or not self._base_url else urljoin(self._base_url, value)
                page.goto(url, **({"wait_until": options["waitUntil"]} if "waitUntil" in options else {}))
            case K.WAIT_FOR_NAVIGATION:
                page.wait_for_load_state(options.get("state", "load"), timeout=timeout)
            case K.RELOAD | K.REFRESH:
                page.reload()
            case K.GO_BACK:
                page.go_back()
            case K.GO_FORWARD:
                page.go_forward()

            # Element actions
            case K.CLICK:
                locator.click()
            case K.DBL_CLICK:
                locator.dblclick()
            case K.RIGHT_CLICK:
                locator.click(button="right")
            case K.HOVER:
                locator.hover()
            case K.FOCUS:
                locator.focus()
            case K.TYPE | K.FILL:
                locator.fill(value)
            case K.PRESS:
                if locator is not None:
                    locator.press(value)
                else:
                    page.keyboard.press(value)
            case K.CLEAR:
                locator.clear()
            case K.SELECT:
                locator.select_option(value)
            case K.CHECK:
                locator.check()
            case K.UNCHECK:
                locator.uncheck()
            case K.SET_CHECKED:
                locator.set_checked(_as_bool(value))
            case K.SCROLL_INTO_VIEW:
                locator.scroll_into_view_if_needed()
            case K.SCROLL_TO:
                x, y = _parse_pair(value, ",", "scroll position")
                page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])
            case K.SCROLL_UP | K.SCROLL_DOWN:
                pixels = int(value) if value else DEFAULT_SCROLL_PIXELS
                page.mouse.wheel(0, -pixels if keyword == K.SCROLL_UP else pixels)
            case K.DRAG_AND_DROP:
                if not options.get("target"):
                    raise StepConfigurationError("dragAndDrop requires options.target locator")
                target = resolve_locator(LocatorDefinition.model_validate(options["target"]), page)
                locator.drag_to(target)
            case K.UPLOAD_FILE:
                paths = [p.strip() for p in value.split(",") if p.strip()]
                locator.set_input_files(paths if len(paths) > 1 else paths[0])
            case K.DOWNLOAD_FILE:
                with page.expect_download(timeout=timeout) as download_info:
                    locator.click()
                download = download_info.value
                path = self._artifact_path(value, f"downloads/{download.suggested_filename}")
                download.save_as(str(path))
                return str(path)

            # Waits
            case K.WAIT_FOR:
                if value.strip().isdigit():
                    page.wait_for_timeout(int(value))
                else:
                    page.wait_for_selector(value, timeout=timeout)
            case K.WAIT_FOR_SELECTOR:
                if locator is not None:
                    locator.wait_for(state=options.get("state", "visible"), timeout=timeout)
                elif value:
                    page.wait_for_selector(value, state=options.get("state", "visible"), timeout=timeout)
                else:
                    raise StepConfigurationError("waitForSelector requires a locator or a selector value")
            case K.WAIT_FOR_TIMEOUT:
                page.wait_for_timeout(float(value))
            case K.WAIT_FOR_FUNCTION:
                page.wait_for_function(value, timeout=timeout)
            case K.WAIT_FOR_ELEMENT:
                locator.wait_for(state=options.get("state", "visible"), timeout=timeout)
            case K.WAIT_FOR_TEXT:
                if locator is not None:
                    self._expect(locator).to_contain_text(value, timeout=timeout)
                else:
                    page.get_by_text(value).first.wait_for(state="visible", timeout=timeout)

            # Extraction
            case K.GET_TEXT:
                return locator.inner_text()
            case K.GET_ATTRIBUTE:
                return locator.get_attribute(value)
            case K.GET_TITLE:
                return page.title()
            case K.GET_URL:
                return page.url
            case K.GET_VALUE:
                return locator.input_value()
            case K.GET_COUNT:
                return locator.count()

            # Element / page assertions
            case K.ASSERT_TEXT | K.ASSERT_HAVE_TEXT:
                self._expect(locator).to_have_text(value, timeout=timeout)
            case K.ASSERT_CONTAINS_TEXT:
                self._expect(locator).to_contain_text(value, timeout=timeout)
            case K.ASSERT_VISIBLE:
                self._expect(locator).to_be_visible(timeout=timeout)
            case K.ASSERT_HIDDEN:
                self._expect(locator).to_be_hidden(timeout=timeout)
            case K.ASSERT_ENABLED:
                self._expect(locator).to_be_enabled(timeout=timeout)
            case K.ASSERT_DISABLED:
                self._expect(locator).to_be_disabled(timeout=timeout)
            case K.ASSERT_CHECKED:
                self._expect(locator).to_be_checked(timeout=timeout)
            case K.ASSERT_UNCHECKED:
                self._expect(locator).not_to_be_checked(timeout=timeout)
            case K.ASSERT_COUNT | K.ASSERT_HAVE_COUNT:
                self._expect(locator).to_have_count(int(value), timeout=timeout)
            case K.ASSERT_VALUE:
                self._expect(locator).to_have_value(value, timeout=timeout)
            case K.ASSERT_ATTRIBUTE:
                name = options.get("attribute") or options.get("name")
                if not name:
                    raise StepConfigurationError("assertAttribute requires options.attribute")
                self._expect(locator).to_have_attribute(name, value, timeout=timeout)
            case K.ASSERT_URL:
                self._expect(page).to_have_url(coerce_text_pattern(value), timeout=timeout)
            case K.ASSERT_TITLE:
                self._expect(page).to_have_title(coerce_text_pattern(value), timeout=timeout)

            # Frames & dialogs
            case K.SWITCH_TO_FRAME | K.GET_ALERT_TEXT:
                raise UnsupportedKeywordError(str(keyword))
            case K.SWITCH_TO_MAIN_FRAME:
                self._log.info("switchToMainFrame is a no-op; steps always target the main frame")
            case K.ACCEPT_ALERT:
                page.once("dialog", lambda dialog: dialog.accept(value) if value else dialog.accept())
            case K.DISMISS_ALERT:
                page.once("dialog", lambda dialog: dialog.dismiss())

            # Tabs & popups
            case K.WAIT_FOR_POPUP:
                with page.expect_popup(timeout=timeout) as popup_info:
                    locator.click()
                popup = popup_info.value
                popup.wait_for_load_state()
                self._session.switch_active_page(popup)
            case K.SWITCH_TO_TAB:
                pages = self._session.pages
                index = int(value)
                if index < 0 or index >= len(pages):
                    raise IndexError(f"Tab {index} out of range ({len(pages)} open)")
                self._session.switch_active_page(pages[index])
            case K.SWITCH_TO_NEW_TAB:
                newest = self._session.pages[-1]
                newest.wait_for_load_state()
                self._session.switch_active_page(newest)

            # Tables
            case K.GET_TABLE_CELL:
                return tables.get_cell_text(locator, self._row(options), self._column(options))
            case K.GET_TABLE_ROW:
                return json.dumps(tables.get_row_texts(locator, self._row(options)))
            case K.GET_TABLE_COLUMN:
                return json.dumps(tables.get_column_texts(locator, self._column(options)))
            case K.ASSERT_TABLE_CELL:
                row, column = self._row(options), self._column(options)
                actual = tables.get_cell_text(locator, row, column)
                if actual != value:
                    raise AssertionError(
                        f"Table cell [{row}, {column}] expected '{value}', got '{actual}'"
                    )
            case K.SORT_TABLE:
                tables.click_header(locator, self._column(options))
            case K.FILTER_TABLE:
                return tables.count_rows_containing(locator, value)
            case K.FIND_TABLE_ROW:
                return tables.find_row_index(locator, value)

            # Generic value assertions
            case (
                K.ASSERT_EQUALS
                | K.ASSERT_NOT_EQUALS
                | K.ASSERT_CONTAINS
                | K.ASSERT_GREATER_THAN
                | K.ASSERT_LESS_THAN
            ):
                self._assert_values(keyword, step)

            # Extension points
            case K.CUSTOM_STEP:
                if step.custom_function is None:
                    raise StepConfigurationError("customStep requires customFunction")
                context = CustomStepContext(
                    page=page, variables=self._scope, browser=self._session.browser
                )
                return self._custom_steps.execute(step.custom_function, context)
            case K.CUSTOM_CODE:
                context = CodeContext(
                    page=page,
                    browser=self._session.browser,
                    expect=self._expect,
                    console=ConsoleCapture(),
                    variables=self._scope,
                )
                return self._custom_steps.run_code(options.get("plugin"), context)

            case _:
                raise UnsupportedKeywordError(str(keyword))
        return None

    def _browser_control(self, keyword: StepKeyword) -> None:
        if keyword == K.OPEN_BROWSER:
            self._session.open()
        else:
            self._session.close()

    @staticmethod
    def _row(options: dict[str, Any]) -> int:
        if "row" not in options:
            raise StepConfigurationError("Table keyword requires options.row")
        return int(options["row"])

    @staticmethod
    def _column(options: dict[str, Any]) -> str | int:
        if "column" not in options:
            raise StepConfigurationError("Table keyword requires options.column")
        return options["column"]

    @staticmethod
    def _assert_values(keyword: StepKeyword, step: TestStep) -> None:
        if "actual" not in step.options:
            raise StepConfigurationError(f"{keyword} requires options.actual")
        actual = step.options["actual"]
        expected = step.options.get("expected", step.value)

        match keyword:
            case K.ASSERT_EQUALS:
                if str(actual) != str(expected):
                    raise AssertionError(f"Expected '{expected}', got '{actual}'")
            case K.ASSERT_NOT_EQUALS:
                if str(actual) == str(expected):
                    raise AssertionError(f"Expected value different from '{expected}'")
            case K.ASSERT_CONTAINS:
                if str(expected) not in str(actual):
                    raise AssertionError(f"Expected '{actual}' to contain '{expected}'")
            case K.ASSERT_GREATER_THAN | K.ASSERT_LESS_THAN:
                try:
                    left, right = float(actual), float(expected)
                except (TypeError, ValueError):
                    raise AssertionError(
                        f"Cannot compare '{actual}' and '{expected}' as numbers"
                    ) from None
                if keyword == K.ASSERT_GREATER_THAN and not left > right:
                    raise AssertionError(f"Expected {left} > {right}")
                if keyword == K.ASSERT_LESS_THAN and not left < right:
                    raise AssertionError(f"Expected {left} < {right}")
