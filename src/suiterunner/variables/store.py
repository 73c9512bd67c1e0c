"""
Scoped variable store.

Variables live in a global map shared by every suite of a run and in local
maps keyed by ``(suite_id, test_case_id)``. Code that reads or writes
variables receives a ``VariableScope`` bound to one test case; lookups go
local, then global, then the persisted registry.
"""

from __future__ import annotations

import re
import threading
from typing import Any

import structlog

from suiterunner.assertions.engine import (
    MISSING,
    AssertionFailure,
    js_string,
    jsonpath_first,
    xpath_first,
)
from suiterunner.variables.registry import VariableRegistry, VariableType

logger = structlog.get_logger(__name__)

TOKEN_PATTERN = re.compile(r"\{\{(.*?)\}\}")


class VariableStoreError(Exception):
    """Raised when one or more store directives could not be applied."""

    def __init__(self, failures: list[str]) -> None:
        self.failures = failures
        super().__init__("; ".join(failures))


def render_value(value: Any) -> str:
    """Render a stored value for template substitution."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str):
        return value
    return js_string(value)


class VariableStore:
    """
    Owns every variable map of a run.

    Thread-safe: suites running in parallel share the global map.
    """

    def __init__(
        self,
        registry: VariableRegistry | None = None,
        persist_runtime_variables: bool = False,
    ) -> None:
        self._registry = registry
        self._persist = persist_runtime_variables and registry is not None
        self._globals: dict[str, Any] = {}
        self._locals: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._log = logger.bind(component="variable_store")

    @property
    def registry(self) -> VariableRegistry | None:
        return self._registry

    def scope(self, suite_id: str = "", test_case_id: str = "") -> VariableScope:
        """Return a scope bound to one test case."""
        return VariableScope(self, suite_id or "", test_case_id or "")

    def set_global(self, name: str, value: Any) -> None:
        with self._lock:
            self._globals[name] = value

    def get_global(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._globals.get(name, default)

    def cleanup_local(self) -> None:
        """Wipe every local map and every local registry record."""
        with self._lock:
            count = sum(len(m) for m in self._locals.values())
            self._locals.clear()
        if self._registry is not None:
            self._registry.cleanup_all_local_variables()
        self._log.info("Cleaned up local variables", count=count)

    def _local_map(self, key: tuple[str, str]) -> dict[str, Any]:
        return self._locals.setdefault(key, {})

    def _set(self, key: tuple[str, str], name: str, value: Any, local: bool) -> None:
        with self._lock:
            if local:
                self._local_map(key)[name] = value
            else:
                self._globals[name] = value

        if self._persist and self._registry is not None:
            self._registry.set_value(
                name,
                value,
                VariableType.LOCAL if local else VariableType.GLOBAL,
                suite_id=key[0] or None,
                test_case_id=key[1] or None,
            )

    def _get(self, key: tuple[str, str], name: str) -> Any:
        with self._lock:
            local_map = self._locals.get(key, {})
            if name in local_map:
                return local_map[name]
            if name in self._globals:
                return self._globals[name]

        if self._registry is None:
            return MISSING

        record = self._registry.find(name, key[0] or None, key[1] or None)
        if record is None:
            return MISSING

        with self._lock:
            if record.type == VariableType.LOCAL:
                self._local_map(key)[name] = record.value
            else:
                self._globals[name] = record.value
        return record.value

    def _snapshot(self, key: tuple[str, str]) -> dict[str, Any]:
        with self._lock:
            return {**self._globals, **self._locals.get(key, {})}


class VariableScope:
    """
    Variable access bound to one ``(suite_id, test_case_id)`` pair.

    Passed by reference through the executor, pre-processor and store code.
    """

    def __init__(self, store: VariableStore, suite_id: str, test_case_id: str) -> None:
        self._store = store
        self._key = (suite_id, test_case_id)

    @property
    def suite_id(self) -> str:
        return self._key[0]

    @property
    def test_case_id(self) -> str:
        return self._key[1]

    @property
    def store(self) -> VariableStore:
        return self._store

    def set(self, name: str, value: Any, local: bool = False) -> None:
        """Set a variable in the local or global map."""
        self._store._set(self._key, name, value, local)

    def get(self, name: str, default: Any = None) -> Any:
        """Look a variable up: local, then global, then registry."""
        value = self._store._get(self._key, name)
        return default if value is MISSING else value

    def has(self, name: str) -> bool:
        return self._store._get(self._key, name) is not MISSING

    def inject(self, text: str) -> str:
        """
        Replace every ``{{ name }}`` token in ``text``.

        Unresolved names become the empty string.
        """
        if not isinstance(text, str) or "{{" not in text:
            return text

        def replace(match: re.Match[str]) -> str:
            return render_value(self._store._get(self._key, match.group(1).strip()))

        return TOKEN_PATTERN.sub(replace, text)

    def inject_object(self, obj: Any) -> Any:
        """Inject recursively through dicts and lists; other values pass through."""
        if isinstance(obj, str):
            return self.inject(obj)
        if isinstance(obj, list):
            return [self.inject_object(item) for item in obj]
        if isinstance(obj, tuple):
            return tuple(self.inject_object(item) for item in obj)
        if isinstance(obj, dict):
            return {
                (self.inject(k) if isinstance(k, str) else k): self.inject_object(v)
                for k, v in obj.items()
            }
        return obj

    def store_response(
        self,
        body: Any,
        store_map: dict[str, str],
        local: bool = False,
        xml: bool = False,
    ) -> list[str]:
        """
        Apply ``var -> expression`` store directives to a response body.

        JSON bodies are addressed with JSONPath, XML bodies with XPath. Every
        directive is attempted; failures are collected.

        Returns:
            Names of the variables that were stored

        Raises:
            VariableStoreError: If any directive matched nothing or errored
        """
        stored: list[str] = []
        failures: list[str] = []
        for name, expression in store_map.items():
            try:
                value = xpath_first(body, expression) if xml else jsonpath_first(body, expression)
            except AssertionFailure as e:
                failures.append(f"{name}: {e.message}")
                continue
            if value is MISSING:
                failures.append(f"{name}: {expression} matched nothing")
                continue
            self.set(name, value, local=local)
            stored.append(name)

        if stored:
            logger.debug(
                "Stored response variables",
                variables=stored,
                scope="local" if local else "global",
                suite_id=self.suite_id,
                test_case_id=self.test_case_id,
            )
        if failures:
            raise VariableStoreError(failures)
        return stored

    def snapshot(self) -> dict[str, Any]:
        """Merged view of global and local variables (locals win)."""
        return self._store._snapshot(self._key)
