"""
File-backed variable registry.

Persists named global and local variables as a JSON list so that values
defined outside a run (or by an earlier run) can be resolved by name.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)


class VariableType(StrEnum):
    """Scope of a registry variable."""

    GLOBAL = "global"
    LOCAL = "local"


class ConflictType(StrEnum):
    """Which existing record a new name collides with."""

    GLOBAL = "global"
    LOCAL = "local"
    BOTH = "both"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Variable(BaseModel):
    """A persisted variable record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str
    value: str = ""
    type: VariableType = VariableType.GLOBAL
    suite_id: str | None = None
    test_case_id: str | None = None
    suite_name: str | None = None
    test_case_name: str | None = None
    description: str | None = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    def belongs_to(self, suite_id: str | None, test_case_id: str | None) -> bool:
        """Check whether a local record is owned by the given test case."""
        return (
            self.type == VariableType.LOCAL
            and self.suite_id == suite_id
            and self.test_case_id == test_case_id
        )


class VariableConflict(BaseModel):
    """Outcome of a conflict check."""

    exists: bool
    conflict_type: ConflictType = ConflictType.GLOBAL
    existing_variable: Variable | None = None
    suggested_name: str | None = None


class AddVariableResult(BaseModel):
    """Outcome of ``VariableRegistry.add_variable``."""

    success: bool
    error: str | None = None
    conflict: VariableConflict | None = None
    variable: Variable | None = None


class VariableRegistry:
    """
    JSON-file registry of global and local variables.

    A global name is unique across the registry. A local name is unique within
    its (suite_id, test_case_id) pair. The file is re-read before every
    operation and rewritten after every mutation; writes are serialized by a
    process-wide lock.
    """

    _write_lock = threading.RLock()

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._variables: list[Variable] = []
        self._log = logger.bind(component="variable_registry", path=str(self._path))
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        """Load records from disk; a broken file starts an empty registry."""
        if not self._path.exists():
            self._variables = []
            return

        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "[]")
            self._variables = [Variable.model_validate(item) for item in data]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            self._log.warning("Failed to load variable registry", error=str(e))
            self._variables = []

    def _save(self) -> None:
        data = [v.model_dump(by_alias=True, exclude_none=True) for v in self._variables]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            self._log.error("Failed to save variable registry", error=str(e))

    def all(self) -> list[Variable]:
        """Return every record."""
        with self._write_lock:
            self._load()
            return list(self._variables)

    def _find_global(self, name: str) -> Variable | None:
        return next(
            (v for v in self._variables if v.name == name and v.type == VariableType.GLOBAL),
            None,
        )

    def _find_local(self, name: str, suite_id: str | None, test_case_id: str | None) -> Variable | None:
        if not (suite_id and test_case_id):
            return None
        return next(
            (v for v in self._variables if v.name == name and v.belongs_to(suite_id, test_case_id)),
            None,
        )

    def _conflict(self, name: str, suite_id: str | None, test_case_id: str | None) -> VariableConflict:
        global_var = self._find_global(name)
        local_var = self._find_local(name, suite_id, test_case_id)

        if global_var and local_var:
            conflict_type, existing = ConflictType.BOTH, global_var
        elif global_var:
            conflict_type, existing = ConflictType.GLOBAL, global_var
        elif local_var:
            conflict_type, existing = ConflictType.LOCAL, local_var
        else:
            return VariableConflict(exists=False)

        return VariableConflict(
            exists=True,
            conflict_type=conflict_type,
            existing_variable=existing,
            suggested_name=self._suggest(name, suite_id, test_case_id),
        )

    def _suggest(self, base_name: str, suite_id: str | None, test_case_id: str | None) -> str:
        counter = 1
        while True:
            candidate = f"{base_name}_{counter}"
            if not (
                self._find_global(candidate)
                or self._find_local(candidate, suite_id, test_case_id)
            ):
                return candidate
            counter += 1

    def check_conflict(
        self,
        name: str,
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> VariableConflict:
        """Check whether ``name`` already exists globally and/or locally."""
        with self._write_lock:
            self._load()
            return self._conflict(name, suite_id, test_case_id)

    def add_variable(self, variable: Variable, force_override: bool = False) -> AddVariableResult:
        """
        Add a variable record.

        Args:
            variable: The record to add
            force_override: Replace the conflicting record instead of rejecting

        Returns:
            AddVariableResult describing success or the conflict
        """
        with self._write_lock:
            self._load()
            conflict = self._conflict(variable.name, variable.suite_id, variable.test_case_id)

            if conflict.exists and not force_override:
                return AddVariableResult(
                    success=False,
                    conflict=conflict,
                    error=(
                        f"Variable '{variable.name}' already exists as "
                        f"{conflict.conflict_type} variable"
                    ),
                )

            if conflict.exists:
                self._remove(variable.name, variable.suite_id, variable.test_case_id)

            now = _now()
            record = variable.model_copy(update={"created_at": now, "updated_at": now})
            self._variables.append(record)
            self._save()

        self._log.debug("Added variable", name=record.name, type=str(record.type))
        return AddVariableResult(success=True, variable=record)

    def set_value(
        self,
        name: str,
        value: Any,
        var_type: VariableType = VariableType.GLOBAL,
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> Variable:
        """Create or update a record in place (last writer wins)."""
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        with self._write_lock:
            self._load()
            existing = (
                self._find_global(name)
                if var_type == VariableType.GLOBAL
                else self._find_local(name, suite_id, test_case_id)
            )
            if existing is not None:
                record = existing.model_copy(update={"value": text, "updated_at": _now()})
                self._variables[self._variables.index(existing)] = record
            else:
                record = Variable(
                    name=name,
                    value=text,
                    type=var_type,
                    suite_id=suite_id if var_type == VariableType.LOCAL else None,
                    test_case_id=test_case_id if var_type == VariableType.LOCAL else None,
                )
                self._variables.append(record)
            self._save()
            return record

    def update_variable(
        self,
        name: str,
        updates: dict[str, Any],
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> AddVariableResult:
        """Update fields of an existing record; renames are conflict-checked."""
        with self._write_lock:
            self._load()
            target = self._match_for_delete(name, suite_id, test_case_id)
            if target is None:
                return AddVariableResult(success=False, error="Variable not found")

            new_name = updates.get("name")
            if new_name and new_name != name:
                conflict = self._conflict(new_name, suite_id, test_case_id)
                if conflict.exists:
                    return AddVariableResult(
                        success=False,
                        conflict=conflict,
                        error=(
                            f"Variable '{new_name}' already exists as "
                            f"{conflict.conflict_type} variable"
                        ),
                    )

            record = target.model_copy(update={**updates, "updated_at": _now()})
            self._variables[self._variables.index(target)] = record
            self._save()
            return AddVariableResult(success=True, variable=record)

    def get_variables(
        self,
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> dict[str, list[Variable]]:
        """Return ``{"global": [...], "local": [...]}`` for a test case."""
        with self._write_lock:
            self._load()
            global_vars = [v for v in self._variables if v.type == VariableType.GLOBAL]
            local_vars = (
                [v for v in self._variables if v.belongs_to(suite_id, test_case_id)]
                if suite_id and test_case_id
                else []
            )
        return {"global": global_vars, "local": local_vars}

    def find(
        self,
        name: str,
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> Variable | None:
        """Look a name up, local record first, then global."""
        with self._write_lock:
            self._load()
            return self._find_local(name, suite_id, test_case_id) or self._find_global(name)

    def _match_for_delete(
        self, name: str, suite_id: str | None, test_case_id: str | None
    ) -> Variable | None:
        for v in self._variables:
            if v.name != name:
                continue
            if v.type == VariableType.GLOBAL and not suite_id:
                return v
            if v.belongs_to(suite_id, test_case_id):
                return v
        return None

    def _remove(self, name: str, suite_id: str | None, test_case_id: str | None) -> bool:
        target = self._match_for_delete(name, suite_id, test_case_id)
        if target is None:
            # An override of a global name from a local context.
            target = self._find_global(name)
        if target is None:
            return False
        self._variables.remove(target)
        return True

    def delete_variable(
        self,
        name: str,
        suite_id: str | None = None,
        test_case_id: str | None = None,
    ) -> bool:
        """Delete a global record (no suite id) or the matching local record."""
        with self._write_lock:
            self._load()
            target = self._match_for_delete(name, suite_id, test_case_id)
            if target is None:
                return False
            self._variables.remove(target)
            self._save()
        return True

    def cleanup_suite(self, suite_id: str) -> None:
        """Remove every local record of a suite."""
        self._retain(lambda v: not (v.type == VariableType.LOCAL and v.suite_id == suite_id))

    def cleanup_test_case(self, suite_id: str, test_case_id: str) -> None:
        """Remove every local record of one test case."""
        self._retain(lambda v: not v.belongs_to(suite_id, test_case_id))

    def cleanup_all_local_variables(self) -> int:
        """Remove every local record; returns how many were removed."""
        return self._retain(lambda v: v.type == VariableType.GLOBAL)

    def _retain(self, keep: Callable[[Variable], bool]) -> int:
        with self._write_lock:
            self._load()
            before = len(self._variables)
            self._variables = [v for v in self._variables if keep(v)]
            removed = before - len(self._variables)
            if removed:
                self._save()
        if removed:
            self._log.debug("Removed local variables", count=removed)
        return removed
