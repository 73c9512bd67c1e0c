"""
Custom step extension points.

Two kinds of user code plug into UI test cases:

``customStep``
    A named ``CustomStep`` (``execute(context, args)``), a plain function
    called as ``fn(page, *args)``, or a ``PageObject.method`` pair whose
    factory is instantiated with the active page on every call.

``customCode``
    A registered code plugin called with a ``CodeContext``. The step's
    literal source is kept for tooling only and is never evaluated.

Modules named in ``custom_step_modules`` are imported at startup; each must
expose ``register(registry)``.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import structlog
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from suiterunner.runner import tables

if TYPE_CHECKING:
    from suiterunner.dsl.models import CustomStepFunction
    from suiterunner.variables.store import VariableScope

logger = structlog.get_logger(__name__)

MAX_ARG_LENGTH = 10000
MAX_VARIABLE_SIZE = 5000
TRUNCATED_SUFFIX = "...[truncated]"


class CustomStepNotFoundError(LookupError):
    """Raised when a custom step, page object or method is not registered."""


class CustomCodeError(Exception):
    """A code plugin failed; ``category`` says how."""

    TIMEOUT = "Timeout in custom code"
    LOCATOR = "Locator error in custom code"
    ASSERTION = "Assertion failed in custom code"
    GENERIC = "Custom code error"

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        super().__init__(f"{category}: {message}")

    @classmethod
    def from_exception(cls, error: BaseException) -> CustomCodeError:
        if isinstance(error, PlaywrightTimeoutError):
            category = cls.TIMEOUT
        elif isinstance(error, AssertionError):
            category = cls.ASSERTION
        elif isinstance(error, PlaywrightError) and "locator" in str(error).lower():
            category = cls.LOCATOR
        else:
            category = cls.GENERIC
        return cls(category, str(error))


@dataclass
class CustomStepContext:
    """What a ``CustomStep`` sees when it runs."""

    page: Any
    variables: VariableScope
    browser: Any = None


@runtime_checkable
class CustomStep(Protocol):
    """A named, reusable UI step."""

    name: str

    def execute(self, context: CustomStepContext, args: list[Any]) -> Any: ...


@dataclass
class CodeContext:
    """Objects handed to a ``customCode`` plugin."""

    page: Any
    browser: Any
    expect: Callable[..., Any]
    console: Any
    variables: VariableScope


CodePlugin = Callable[[CodeContext], Any]


@dataclass
class _FunctionStep:
    name: str
    func: Callable[..., Any]

    def execute(self, context: CustomStepContext, args: list[Any]) -> Any:
        return self.func(context.page, *args)


def _truncate(value: str, limit: int, what: str) -> str:
    if len(value) <= limit:
        return value
    logger.warning("Value truncated", target=what, original_length=len(value), limit=limit)
    return value[:limit] + TRUNCATED_SUFFIX


def _nested(obj: Any, path: str) -> Any:
    current = obj
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.lstrip("-").isdigit():
            index = int(key)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            current = getattr(current, key, None)
        if current is None:
            return None
    return current


def map_result(
    scope: VariableScope,
    result: Any,
    map_to: dict[str, str],
    local: bool = False,
) -> list[str]:
    """
    Store a custom step result into variables.

    Dict-like results are addressed by dotted path per ``mapTo`` entry; any
    other result goes to the first ``mapTo`` key. Returns the stored names.
    """
    if result is None or not map_to:
        return []

    stored: list[str] = []
    if isinstance(result, dict) or (hasattr(result, "__dict__") and not isinstance(result, str)):
        for name, path in map_to.items():
            value = _nested(result, path)
            if value is None:
                continue
            if isinstance(value, str):
                value = _truncate(value, MAX_VARIABLE_SIZE, name)
            scope.set(name, value, local=local)
            stored.append(name)
        return stored

    name = next(iter(map_to))
    value = _truncate(result, MAX_VARIABLE_SIZE, name) if isinstance(result, str) else result
    scope.set(name, value, local=local)
    return [name]


class CustomStepRegistry:
    """
    Registry of custom steps, page objects and code plugins.

    Usage:
        registry = CustomStepRegistry()
        registry.register_function("login", login)
        registry.register_page_object("LoginPage", LoginPage)
    """

    def __init__(self, builtins: bool = True) -> None:
        self._steps: dict[str, CustomStep] = {}
        self._page_objects: dict[str, Callable[[Any], Any]] = {}
        self._code_plugins: dict[str, CodePlugin] = {}
        self._log = logger.bind(component="custom_steps")
        if builtins:
            register_builtin_steps(self)

    def register_step(self, step: CustomStep) -> None:
        self._steps[step.name] = step
        self._log.debug("Registered custom step", step=step.name)

    def register_function(self, name: str, func: Callable[..., Any]) -> None:
        """Register a plain function called as ``func(page, *args)``."""
        self.register_step(_FunctionStep(name, func))

    def register_page_object(self, name: str, factory: Callable[[Any], Any]) -> None:
        self._page_objects[name] = factory
        self._log.debug("Registered page object", page_object=name)

    def register_code_plugin(self, name: str, plugin: CodePlugin) -> None:
        self._code_plugins[name] = plugin
        self._log.debug("Registered code plugin", plugin=name)

    @property
    def step_names(self) -> list[str]:
        return sorted(self._steps)

    @property
    def page_object_names(self) -> list[str]:
        return sorted(self._page_objects)

    @property
    def code_plugin_names(self) -> list[str]:
        return sorted(self._code_plugins)

    def has(self, name: str) -> bool:
        if "." in name:
            return name.split(".", 1)[0] in self._page_objects
        return name in self._steps

    def _process_args(self, args: Iterable[Any], scope: VariableScope) -> list[Any]:
        processed = []
        for arg in args:
            if isinstance(arg, str):
                arg = _truncate(scope.inject(arg), MAX_ARG_LENGTH, "argument")
            processed.append(arg)
        return processed

    def execute(
        self,
        function: CustomStepFunction,
        context: CustomStepContext,
    ) -> Any:
        """
        Run a ``customStep`` reference and apply its ``mapTo``.

        Raises:
            CustomStepNotFoundError: If the step, page object or method is unknown
        """
        args = self._process_args(function.args, context.variables)

        if "." in function.function:
            object_name, method_name = function.function.split(".", 1)
            factory = self._page_objects.get(object_name)
            if factory is None:
                raise CustomStepNotFoundError(
                    f"Page object '{object_name}' not found. "
                    f"Available: {', '.join(self.page_object_names)}"
                )
            page_object = factory(context.page)
            method = getattr(page_object, method_name, None)
            if not callable(method):
                raise CustomStepNotFoundError(
                    f"Method '{method_name}' not found in page object '{object_name}'"
                )
            result = method(*args)
        else:
            step = self._steps.get(function.function)
            if step is None:
                raise CustomStepNotFoundError(
                    f"Custom function '{function.function}' not found. "
                    f"Available: {', '.join(self.step_names)}"
                )
            result = step.execute(context, args)

        if function.map_to:
            stored = map_result(context.variables, result, function.map_to)
            self._log.debug("Mapped custom step result", function=function.function, variables=stored)
        return result

    def run_code(self, plugin_name: str | None, context: CodeContext) -> Any:
        """
        Run a registered code plugin.

        Raises:
            CustomStepNotFoundError: If no plugin is registered under the name
            CustomCodeError: If the plugin raised
        """
        if not plugin_name or plugin_name not in self._code_plugins:
            raise CustomStepNotFoundError(
                f"Code plugin '{plugin_name}' not found. "
                f"Available: {', '.join(self.code_plugin_names)}"
            )
        try:
            return self._code_plugins[plugin_name](context)
        except Exception as e:
            raise CustomCodeError.from_exception(e) from e


class ExtractTableDataStep:
    """Read every body row of a table as a list of cell texts."""

    name = "extractTableData"

    def execute(self, context: CustomStepContext, args: list[Any]) -> dict[str, Any]:
        if not args:
            raise ValueError("extractTableData requires a table selector")
        table = context.page.locator(str(args[0]))
        rows = tables.table_rows(table)
        data = [
            [text.strip() for text in tables.row_cells(rows.nth(i)).all_inner_texts()]
            for i in range(rows.count())
        ]
        return {"tableData": data, "rowCount": len(data)}


class WaitForApiResponseStep:
    """Wait for a successful response whose URL contains the given fragment."""

    name = "waitForApiResponse"

    def execute(self, context: CustomStepContext, args: list[Any]) -> dict[str, Any]:
        if not args:
            raise ValueError("waitForApiResponse requires an endpoint fragment")
        endpoint = str(args[0])
        timeout = float(args[1]) if len(args) > 1 else 5000

        response = context.page.wait_for_event(
            "response",
            predicate=lambda r: endpoint in r.url and r.status == 200,
            timeout=timeout,
        )
        try:
            data = response.json()
        except (PlaywrightError, json.JSONDecodeError):
            data = response.text()
        return {"responseData": data, "status": response.status}


def register_builtin_steps(registry: CustomStepRegistry) -> None:
    registry.register_step(ExtractTableDataStep())
    registry.register_step(WaitForApiResponseStep())


def load_custom_step_modules(registry: CustomStepRegistry, modules: Iterable[str]) -> list[str]:
    """
    Import extension modules and call their ``register(registry)``.

    Raises:
        ImportError: If a module cannot be imported
        TypeError: If a module has no callable ``register``
    """
    loaded = []
    for module_name in modules:
        module = importlib.import_module(module_name)
        register = getattr(module, "register", None)
        if not callable(register):
            raise TypeError(f"Custom step module '{module_name}' has no register(registry) function")
        register(registry)
        loaded.append(module_name)
        logger.info("Loaded custom step module", module=module_name)
    return loaded


@dataclass
class ConsoleCapture:
    """Minimal ``console`` for code plugins; messages go to the structured log."""

    messages: list[str] = field(default_factory=list)

    def log(self, *args: Any) -> None:
        message = " ".join(str(a) for a in args)
        self.messages.append(message)
        logger.info("customCode console", message=message)

    def error(self, *args: Any) -> None:
        message = " ".join(str(a) for a in args)
        self.messages.append(message)
        logger.error("customCode console", message=message)
