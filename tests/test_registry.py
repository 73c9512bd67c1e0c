"""Tests for the file-backed variable registry."""

from __future__ import annotations

import json
from pathlib import Path

from suiterunner.variables.registry import (
    ConflictType,
    Variable,
    VariableRegistry,
    VariableType,
)


def local_var(name: str, value: str = "v", suite_id: str = "s1", test_case_id: str = "t1") -> Variable:
    return Variable(
        name=name,
        value=value,
        type=VariableType.LOCAL,
        suite_id=suite_id,
        test_case_id=test_case_id,
    )


class TestAddVariable:
    """Tests for adding records and conflict handling."""

    def test_add_global(self, registry: VariableRegistry) -> None:
        result = registry.add_variable(Variable(name="token", value="abc"))

        assert result.success
        assert result.variable.name == "token"
        assert registry.find("token").value == "abc"

    def test_persisted_camel_case(self, registry: VariableRegistry) -> None:
        """Test records are written as a camelCase JSON list."""
        registry.add_variable(local_var("orderId", "42"))

        data = json.loads(registry.path.read_text())
        assert data[0]["name"] == "orderId"
        assert data[0]["suiteId"] == "s1"
        assert data[0]["testCaseId"] == "t1"
        assert "createdAt" in data[0]

    def test_global_conflict_suggests_name(self, registry: VariableRegistry) -> None:
        """Test a duplicate global is rejected with a suggested name."""
        registry.add_variable(Variable(name="token"))
        registry.add_variable(Variable(name="token_1"))

        result = registry.add_variable(Variable(name="token"))

        assert not result.success
        assert result.conflict.conflict_type == ConflictType.GLOBAL
        assert result.conflict.suggested_name == "token_2"
        assert "already exists as global variable" in result.error

    def test_local_conflicts_with_global(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="token"))

        result = registry.add_variable(local_var("token"))

        assert not result.success
        assert result.conflict.conflict_type == ConflictType.GLOBAL

    def test_both_conflict(self, registry: VariableRegistry) -> None:
        registry.add_variable(local_var("token"))
        registry.add_variable(Variable(name="token"), force_override=True)

        conflict = registry.check_conflict("token", "s1", "t1")

        assert conflict.exists
        assert conflict.conflict_type == ConflictType.BOTH

    def test_locals_in_other_test_cases_do_not_conflict(self, registry: VariableRegistry) -> None:
        registry.add_variable(local_var("row", test_case_id="t1"))

        result = registry.add_variable(local_var("row", test_case_id="t2"))

        assert result.success
        assert len(registry.all()) == 2

    def test_force_override_replaces(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="token", value="old"))

        result = registry.add_variable(Variable(name="token", value="new"), force_override=True)

        assert result.success
        records = [v for v in registry.all() if v.name == "token"]
        assert len(records) == 1
        assert records[0].value == "new"


class TestLookupAndUpdate:
    """Tests for find, set_value and update_variable."""

    def test_find_prefers_local(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="env", value="global"))
        registry.add_variable(local_var("env", "local"), force_override=True)
        # The override removed the global; add it back directly.
        registry.set_value("env", "global")

        assert registry.find("env", "s1", "t1").value == "local"
        assert registry.find("env").value == "global"

    def test_set_value_serializes_non_strings(self, registry: VariableRegistry) -> None:
        record = registry.set_value("ids", [1, 2])
        assert record.value == "[1, 2]"

        registry.set_value("ids", "x")
        assert [v.value for v in registry.all()] == ["x"]

    def test_update_renames(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="old"))

        result = registry.update_variable("old", {"name": "new", "value": "1"})

        assert result.success
        assert registry.find("new").value == "1"
        assert registry.find("old") is None

    def test_update_rename_conflict(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="a"))
        registry.add_variable(Variable(name="b"))

        result = registry.update_variable("a", {"name": "b"})

        assert not result.success
        assert result.conflict.suggested_name == "b_1"

    def test_update_missing(self, registry: VariableRegistry) -> None:
        result = registry.update_variable("nope", {"value": "1"})
        assert not result.success
        assert result.error == "Variable not found"

    def test_get_variables(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="g"))
        registry.add_variable(local_var("l"))
        registry.add_variable(local_var("other", test_case_id="t9"))

        variables = registry.get_variables("s1", "t1")

        assert [v.name for v in variables["global"]] == ["g"]
        assert [v.name for v in variables["local"]] == ["l"]
        assert registry.get_variables()["local"] == []


class TestDeleteAndCleanup:
    """Tests for deletion and local cleanup."""

    def test_delete_global(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="g"))

        assert registry.delete_variable("g")
        assert not registry.delete_variable("g")

    def test_delete_local_needs_owner(self, registry: VariableRegistry) -> None:
        registry.add_variable(local_var("l"))

        assert not registry.delete_variable("l")
        assert registry.delete_variable("l", "s1", "t1")

    def test_cleanup_suite_and_test_case(self, registry: VariableRegistry) -> None:
        registry.add_variable(local_var("a", suite_id="s1", test_case_id="t1"))
        registry.add_variable(local_var("b", suite_id="s1", test_case_id="t2"))
        registry.add_variable(local_var("c", suite_id="s2", test_case_id="t1"))

        registry.cleanup_test_case("s1", "t1")
        assert sorted(v.name for v in registry.all()) == ["b", "c"]

        registry.cleanup_suite("s1")
        assert [v.name for v in registry.all()] == ["c"]

    def test_cleanup_all_local(self, registry: VariableRegistry) -> None:
        registry.add_variable(Variable(name="g"))
        registry.add_variable(local_var("a"))
        registry.add_variable(local_var("b", test_case_id="t2"))

        assert registry.cleanup_all_local_variables() == 2
        assert [v.name for v in registry.all()] == ["g"]


class TestRegistryFile:
    """Tests for reading the backing file."""

    def test_missing_file_is_empty(self, temp_dir: Path) -> None:
        assert VariableRegistry(temp_dir / "none.json").all() == []

    def test_corrupt_file_is_empty(self, temp_dir: Path) -> None:
        path = temp_dir / "vars.json"
        path.write_text("{broken")
        assert VariableRegistry(path).all() == []

    def test_shared_file_between_instances(self, temp_dir: Path) -> None:
        """Test every operation re-reads the file."""
        path = temp_dir / "vars.json"
        first = VariableRegistry(path)
        second = VariableRegistry(path)

        first.add_variable(Variable(name="shared", value="1"))

        assert second.find("shared").value == "1"
