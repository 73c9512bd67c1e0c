"""
Pydantic models for JSON test suite definitions.

Suites are authored as camelCase JSON documents; every model accepts both the
camelCase alias and the snake_case attribute name. Unknown keys are ignored so
editor-only metadata never breaks loading.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class SuiteModel(BaseModel):
    """Base model for suite documents (camelCase aliases, extra keys ignored)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class FrozenSuiteModel(SuiteModel):
    """Immutable suite model, used for the recursive locator grammar."""

    model_config = ConfigDict(frozen=True)


class SuiteType(StrEnum):
    """Kind of suite."""

    API = "API"
    UI = "UI"


class TestCaseType(StrEnum):
    """Kind of test case."""

    REST = "REST"
    SOAP = "SOAP"
    UI = "UI"


class StepKeyword(StrEnum):
    """Closed set of UI actions a test step may perform."""

    # Browser / page control
    OPEN_BROWSER = "openBrowser"
    CLOSE_BROWSER = "closeBrowser"
    CLOSE_PAGE = "closePage"
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"
    SET_VIEWPORT_SIZE = "setViewportSize"
    SCREENSHOT = "screenshot"

    # Navigation
    GOTO = "goto"
    WAIT_FOR_NAVIGATION = "waitForNavigation"
    RELOAD = "reload"
    REFRESH = "refresh"
    GO_BACK = "goBack"
    GO_FORWARD = "goForward"

    # Element actions
    CLICK = "click"
    DBL_CLICK = "dblClick"
    RIGHT_CLICK = "rightClick"
    TYPE = "type"
    FILL = "fill"
    PRESS = "press"
    CLEAR = "clear"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"
    SET_CHECKED = "setChecked"
    HOVER = "hover"
    FOCUS = "focus"
    SCROLL_INTO_VIEW = "scrollIntoViewIfNeeded"
    SCROLL_TO = "scrollTo"
    SCROLL_UP = "scrollUp"
    SCROLL_DOWN = "scrollDown"
    DRAG_AND_DROP = "dragAndDrop"
    UPLOAD_FILE = "uploadFile"
    DOWNLOAD_FILE = "downloadFile"

    # Waits
    WAIT_FOR = "waitFor"
    WAIT_FOR_SELECTOR = "waitForSelector"
    WAIT_FOR_TIMEOUT = "waitForTimeout"
    WAIT_FOR_FUNCTION = "waitForFunction"
    WAIT_FOR_ELEMENT = "waitForElement"
    WAIT_FOR_TEXT = "waitForText"

    # Extraction
    GET_TEXT = "getText"
    GET_ATTRIBUTE = "getAttribute"
    GET_TITLE = "getTitle"
    GET_URL = "getUrl"
    GET_VALUE = "getValue"
    GET_COUNT = "getCount"

    # Element / page assertions
    ASSERT_TEXT = "assertText"
    ASSERT_VISIBLE = "assertVisible"
    ASSERT_HIDDEN = "assertHidden"
    ASSERT_ENABLED = "assertEnabled"
    ASSERT_DISABLED = "assertDisabled"
    ASSERT_COUNT = "assertCount"
    ASSERT_VALUE = "assertValue"
    ASSERT_ATTRIBUTE = "assertAttribute"
    ASSERT_HAVE_TEXT = "assertHaveText"
    ASSERT_HAVE_COUNT = "assertHaveCount"
    ASSERT_CHECKED = "assertChecked"
    ASSERT_UNCHECKED = "assertUnchecked"
    ASSERT_CONTAINS_TEXT = "assertContainsText"
    ASSERT_URL = "assertUrl"
    ASSERT_TITLE = "assertTitle"

    # Frames & dialogs
    SWITCH_TO_FRAME = "switchToFrame"
    SWITCH_TO_MAIN_FRAME = "switchToMainFrame"
    ACCEPT_ALERT = "acceptAlert"
    DISMISS_ALERT = "dismissAlert"
    GET_ALERT_TEXT = "getAlertText"

    # Tabs & popups
    WAIT_FOR_POPUP = "waitForPopup"
    SWITCH_TO_TAB = "switchToTab"
    SWITCH_TO_NEW_TAB = "switchToNewTab"
    CLOSE_TAB = "closeTab"

    # Tables
    GET_TABLE_CELL = "getTableCell"
    GET_TABLE_ROW = "getTableRow"
    GET_TABLE_COLUMN = "getTableColumn"
    ASSERT_TABLE_CELL = "assertTableCell"
    SORT_TABLE = "sortTable"
    FILTER_TABLE = "filterTable"
    FIND_TABLE_ROW = "findTableRow"

    # Generic value assertions
    ASSERT_EQUALS = "assertEquals"
    ASSERT_NOT_EQUALS = "assertNotEquals"
    ASSERT_CONTAINS = "assertContains"
    ASSERT_GREATER_THAN = "assertGreaterThan"
    ASSERT_LESS_THAN = "assertLessThan"

    # Extension points
    CUSTOM_STEP = "customStep"
    CUSTOM_CODE = "customCode"


class LocatorStrategy(StrEnum):
    """Base locator strategies, mirroring Playwright's locator factories."""

    ROLE = "role"
    LABEL = "label"
    TEXT = "text"
    PLACEHOLDER = "placeholder"
    ALT_TEXT = "altText"
    TITLE = "title"
    TEST_ID = "testId"
    CSS = "css"
    XPATH = "xpath"
    LOCATOR = "locator"


class FilterType(StrEnum):
    """Locator filter kinds."""

    HAS_TEXT = "hasText"
    HAS_NOT_TEXT = "hasNotText"
    HAS = "has"
    HAS_NOT = "hasNot"
    VISIBLE = "visible"
    HIDDEN = "hidden"


class ChainOperationType(StrEnum):
    """Operations allowed inside a locator chain."""

    LOCATOR = "locator"
    FILTER = "filter"
    NTH = "nth"
    FIRST = "first"
    LAST = "last"


class AssertionType(StrEnum):
    """Response assertion kinds."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IN = "in"
    NOT_IN = "notIn"
    INCLUDES_ALL = "includesAll"
    LENGTH = "length"
    SIZE = "size"
    STATUS_CODE = "statusCode"
    TYPE = "type"
    EXISTS = "exists"
    REGEX = "regex"
    ARRAY_OBJECT_MATCH = "arrayObjectMatch"


_REGEX_LITERAL = re.compile(r"^/(.+)/([imsx]*)$", re.DOTALL)


def coerce_text_pattern(value: Any) -> Any:
    """Turn ``"/pattern/flags"`` strings into compiled regexes."""
    if not isinstance(value, str):
        return value
    match = _REGEX_LITERAL.match(value)
    if not match:
        return value
    flags = 0
    for flag in match.group(2):
        flags |= {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}[flag]
    return re.compile(match.group(1), flags)


class LocatorOptions(FrozenSuiteModel):
    """Refinement options for a base locator."""

    name: str | None = None
    exact: bool | None = None
    checked: bool | None = None
    expanded: bool | None = None
    pressed: bool | None = None
    selected: bool | None = None
    disabled: bool | None = None
    level: int | None = None
    include_hidden: bool | None = None
    has_text: str | None = None
    has_not_text: str | None = None


class FilterDefinition(FrozenSuiteModel):
    """A single locator filter."""

    type: FilterType
    value: str | None = None
    locator: LocatorDefinition | None = None

    @model_validator(mode="after")
    def validate_filter(self) -> FilterDefinition:
        """Text filters need a value; has/hasNot need a nested locator."""
        if self.type in (FilterType.HAS_TEXT, FilterType.HAS_NOT_TEXT) and self.value is None:
            raise ValueError(f"Filter '{self.type}' requires a value")
        if self.type in (FilterType.HAS, FilterType.HAS_NOT) and self.locator is None:
            raise ValueError(f"Filter '{self.type}' requires a nested locator")
        return self


class ChainOperation(FrozenSuiteModel):
    """One narrowing operation in a locator chain."""

    type: ChainOperationType
    locator: LocatorDefinition | None = None
    filter: FilterDefinition | None = None
    index: int | None = None

    @model_validator(mode="after")
    def validate_operation(self) -> ChainOperation:
        """Ensure the operation carries the payload its type needs."""
        match self.type:
            case ChainOperationType.LOCATOR if self.locator is None:
                raise ValueError("Chain 'locator' operation requires a locator")
            case ChainOperationType.FILTER if self.filter is None:
                raise ValueError("Chain 'filter' operation requires a filter")
            case ChainOperationType.NTH if self.index is None:
                raise ValueError("Chain 'nth' operation requires an index")
        return self


class LocatorDefinition(FrozenSuiteModel):
    """
    Declarative, recursive description of how to find an element.

    Composition order at resolution time: base strategy, legacy ``filter``,
    ``filters`` list, ``chain`` operations, terminal ``index``.
    """

    strategy: LocatorStrategy | str
    value: str
    options: LocatorOptions | None = None
    filter: FilterDefinition | None = None
    filters: tuple[FilterDefinition, ...] = ()
    chain: tuple[ChainOperation, ...] = ()
    index: Literal["first", "last"] | int | None = None

    @field_validator("strategy", mode="before")
    @classmethod
    def validate_strategy(cls, v: Any) -> Any:
        """Known strategies become enum members; unknown ones fail at resolution time."""
        try:
            return LocatorStrategy(v)
        except ValueError:
            return v

    @field_validator("index", mode="before")
    @classmethod
    def validate_index(cls, v: Any) -> Any:
        """Accept numeric strings for the terminal index."""
        if isinstance(v, str) and v.strip().lstrip("-").isdigit():
            return int(v)
        return v


class Assertion(SuiteModel):
    """A response assertion (JSONPath or XPath based)."""

    type: AssertionType | str
    json_path: str | None = None
    xpath_expression: str | None = None
    expected: Any = None
    match_field: str | None = None
    match_value: Any = None
    assert_field: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        """Known types become enum members; unknown ones fail only their own assertion."""
        try:
            return AssertionType(v)
        except ValueError:
            return v

    @model_validator(mode="after")
    def validate_array_match(self) -> Assertion:
        """arrayObjectMatch needs its three addressing fields."""
        if self.type == AssertionType.ARRAY_OBJECT_MATCH:
            missing = [
                name
                for name, val in (
                    ("matchField", self.match_field),
                    ("matchValue", self.match_value),
                    ("assertField", self.assert_field),
                )
                if val is None
            ]
            if missing:
                raise ValueError(f"arrayObjectMatch requires {', '.join(missing)}")
        return self


class PreProcessStep(SuiteModel):
    """A value-producing function run before a request."""

    function: str
    var: str | None = None
    args: list[Any] = Field(default_factory=list)
    map_to: dict[str, str] | None = None
    local: bool = False


class CustomStepFunction(SuiteModel):
    """Reference to a registered custom step or page-object method."""

    function: str
    args: list[Any] = Field(default_factory=list)
    map_to: dict[str, str] | None = None

    @field_validator("function")
    @classmethod
    def validate_function(cls, v: str) -> str:
        """Function name cannot be empty."""
        if not v.strip():
            raise ValueError("Custom function name cannot be empty")
        return v.strip()


class TestData(SuiteModel):
    """One concrete API request scenario."""

    name: str = ""
    method: str = "GET"
    endpoint: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    body_file: str | None = None
    pre_process: list[PreProcessStep] = Field(default_factory=list)
    assertions: list[Assertion] = Field(default_factory=list)
    response_schema: dict[str, Any] | None = None
    response_schema_file: str | None = None
    store: dict[str, str] = Field(default_factory=dict)
    local_store: dict[str, str] = Field(default_factory=dict)

    @field_validator("pre_process", mode="before")
    @classmethod
    def validate_pre_process(cls, v: Any) -> Any:
        """The editor writes ``null`` when no preprocessors are configured."""
        return v or []

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        """Normalize HTTP method."""
        return v.upper()


class TestStep(SuiteModel):
    """One concrete UI automation action."""

    id: str = ""
    keyword: StepKeyword | str
    target: str | None = None
    locator: LocatorDefinition | None = None
    value: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    custom_function: CustomStepFunction | None = None
    custom_code: str | None = None
    store: dict[str, str] = Field(default_factory=dict)
    local_store: dict[str, str] = Field(default_factory=dict)
    skip_on_failure: bool = False
    enabled: bool = True

    @field_validator("keyword", mode="before")
    @classmethod
    def validate_keyword(cls, v: Any) -> Any:
        """Known keywords become enum members; unknown ones fail when the step runs."""
        try:
            return StepKeyword(v)
        except ValueError:
            return v

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: Any) -> Any:
        """Numbers and booleans are accepted and kept as their string form."""
        if isinstance(v, bool):
            return str(v).lower()
        if isinstance(v, int | float):
            return str(v)
        return v

    @field_validator("options", mode="before")
    @classmethod
    def validate_options(cls, v: Any) -> Any:
        return v or {}


class TestCase(SuiteModel):
    """A named group of test data items (API) or test steps (UI)."""

    id: str | None = None
    name: str
    type: TestCaseType = TestCaseType.REST
    status: str | None = None
    priority: int | None = None
    depends_on: list[str] | None = None
    test_data: list[TestData] = Field(default_factory=list)
    test_steps: list[TestStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_step_ids(self) -> TestCase:
        """Step ids must be unique within a test case."""
        ids = [step.id for step in self.test_steps if step.id]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step ids in test case '{self.name}': {duplicates}")
        return self

    @property
    def is_ui(self) -> bool:
        return self.type == TestCaseType.UI

    @property
    def is_api(self) -> bool:
        return self.type in (TestCaseType.REST, TestCaseType.SOAP)


class TestSuite(SuiteModel):
    """
    Top-level suite document.

    Identity for lookup is ``id`` OR ``suiteName``.
    """

    id: str = ""
    suite_name: str
    application_name: str | None = None
    type: SuiteType = SuiteType.API
    base_url: str = ""
    tags: list[dict[str, str]] = Field(default_factory=list)
    test_cases: list[TestCase] = Field(min_length=1)

    def matches(self, suite_id: str | None, suite_name: str | None) -> bool:
        """Check whether either identifier names this suite."""
        return bool(
            (suite_id and self.id == suite_id)
            or (suite_name and self.suite_name == suite_name)
        )

    def merged_tags(self) -> dict[str, str]:
        """Fold the ordered tag list into one map (later entries win)."""
        merged: dict[str, str] = {}
        for tag in self.tags:
            merged.update(tag)
        return merged

    def find_test_case(self, test_case_id: str | None, test_case_name: str | None) -> TestCase | None:
        """Find a test case by name or id."""
        for test_case in self.test_cases:
            if (test_case_name and test_case.name == test_case_name) or (
                test_case_id and test_case.id == test_case_id
            ):
                return test_case
        return None


FilterDefinition.model_rebuild()
ChainOperation.model_rebuild()
LocatorDefinition.model_rebuild()
