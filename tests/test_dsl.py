"""Tests for suite models and the suite loader."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from suiterunner.dsl.models import (
    AssertionType,
    ChainOperation,
    LocatorDefinition,
    LocatorStrategy,
    StepKeyword,
    SuiteType,
    TestCase,
    TestCaseType,
    TestStep,
    TestSuite,
    coerce_text_pattern,
)
from suiterunner.dsl.parser import SuiteLoader, SuiteLoadError


class TestSuiteModels:
    """Tests for suite document models."""

    def test_parse_api_suite(self, sample_api_suite: dict[str, Any]) -> None:
        """Test camelCase documents parse into models."""
        suite = TestSuite.model_validate(sample_api_suite)

        assert suite.id == "api-1"
        assert suite.suite_name == "Users API"
        assert suite.type == SuiteType.API
        assert len(suite.test_cases) == 2
        data = suite.test_cases[0].test_data[0]
        assert data.method == "GET"
        assert data.assertions[1].type == AssertionType.EQUALS
        assert data.assertions[1].json_path == "$.name"
        assert data.store == {"userName": "$.name"}

    def test_suite_requires_test_cases(self) -> None:
        """Test a suite without test cases is rejected."""
        with pytest.raises(ValidationError):
            TestSuite.model_validate({"suiteName": "Empty", "testCases": []})

    def test_unknown_keys_ignored(self) -> None:
        """Test editor-only keys do not break loading."""
        suite = TestSuite.model_validate(
            {
                "suiteName": "S",
                "editorColor": "blue",
                "testCases": [{"name": "tc", "uiHint": True}],
            }
        )
        assert suite.test_cases[0].name == "tc"

    def test_matches_by_id_or_name(self, sample_api_suite: dict[str, Any]) -> None:
        """Test suite identity lookup uses id OR name."""
        suite = TestSuite.model_validate(sample_api_suite)

        assert suite.matches("api-1", "something else")
        assert suite.matches("nope", "Users API")
        assert not suite.matches("nope", "nope")
        assert not suite.matches(None, None)

    def test_merged_tags_later_wins(self) -> None:
        """Test tag maps fold left to right."""
        suite = TestSuite.model_validate(
            {
                "suiteName": "S",
                "tags": [{"env": "qa"}, {"env": "prod", "team": "core"}],
                "testCases": [{"name": "tc"}],
            }
        )
        assert suite.merged_tags() == {"env": "prod", "team": "core"}

    def test_find_test_case(self, sample_api_suite: dict[str, Any]) -> None:
        """Test test cases are found by name or id."""
        suite = TestSuite.model_validate(sample_api_suite)

        assert suite.find_test_case("tc-2", None).name == "Create user"
        assert suite.find_test_case(None, "Get user").id == "tc-1"
        assert suite.find_test_case("x", "y") is None


class TestTestCaseModels:
    """Tests for test case and step models."""

    def test_type_helpers(self) -> None:
        """Test UI/API classification."""
        assert TestCase(name="a", type=TestCaseType.UI).is_ui
        assert TestCase(name="a", type=TestCaseType.SOAP).is_api
        assert not TestCase(name="a", type=TestCaseType.REST).is_ui

    def test_duplicate_step_ids_rejected(self) -> None:
        """Test step ids must be unique."""
        with pytest.raises(ValidationError, match="Duplicate step ids"):
            TestCase.model_validate(
                {
                    "name": "tc",
                    "type": "UI",
                    "testSteps": [
                        {"id": "s1", "keyword": "click"},
                        {"id": "s1", "keyword": "hover"},
                    ],
                }
            )

    def test_unknown_keyword_kept_as_string(self) -> None:
        """Test unknown keywords load and stay plain strings."""
        step = TestStep.model_validate({"keyword": "teleport"})
        assert step.keyword == "teleport"
        assert not isinstance(step.keyword, StepKeyword)

    def test_known_keyword_is_enum(self) -> None:
        step = TestStep.model_validate({"keyword": "click"})
        assert step.keyword is StepKeyword.CLICK

    def test_step_value_coerced_to_string(self) -> None:
        """Test numbers and booleans keep their string form."""
        assert TestStep.model_validate({"keyword": "fill", "value": 42}).value == "42"
        assert TestStep.model_validate({"keyword": "fill", "value": True}).value == "true"

    def test_null_options_and_pre_process(self) -> None:
        """Test editor nulls normalize to empty containers."""
        step = TestStep.model_validate({"keyword": "click", "options": None})
        assert step.options == {}

        case = TestCase.model_validate(
            {"name": "tc", "testData": [{"name": "d", "preProcess": None}]}
        )
        assert case.test_data[0].pre_process == []

    def test_unknown_assertion_type_loads(self) -> None:
        """Test an unknown assertion type does not reject the suite."""
        suite = TestSuite.model_validate(
            {
                "suiteName": "S",
                "testCases": [
                    {
                        "name": "tc",
                        "testData": [
                            {
                                "assertions": [
                                    {"type": "matchesSchema"},
                                    {"type": "statusCode", "expected": 200},
                                ]
                            }
                        ],
                    }
                ],
            }
        )

        unknown, known = suite.test_cases[0].test_data[0].assertions
        assert unknown.type == "matchesSchema"
        assert not isinstance(unknown.type, AssertionType)
        assert known.type is AssertionType.STATUS_CODE

    def test_array_object_match_requires_fields(self) -> None:
        """Test arrayObjectMatch validates its addressing fields."""
        with pytest.raises(ValidationError, match="matchField"):
            TestCase.model_validate(
                {
                    "name": "tc",
                    "testData": [
                        {"assertions": [{"type": "arrayObjectMatch", "jsonPath": "$.items"}]}
                    ],
                }
            )


class TestLocatorModels:
    """Tests for the recursive locator grammar."""

    def test_nested_locator(self) -> None:
        """Test filters and chains parse recursively."""
        locator = LocatorDefinition.model_validate(
            {
                "strategy": "css",
                "value": "li",
                "filters": [
                    {"type": "has", "locator": {"strategy": "text", "value": "Ada"}},
                ],
                "chain": [{"type": "nth", "index": 1}],
                "index": "last",
            }
        )

        assert locator.strategy is LocatorStrategy.CSS
        assert locator.filters[0].locator.strategy is LocatorStrategy.TEXT
        assert locator.chain[0].index == 1
        assert locator.index == "last"

    def test_numeric_string_index(self) -> None:
        locator = LocatorDefinition.model_validate({"strategy": "css", "value": "li", "index": "2"})
        assert locator.index == 2

    def test_unknown_strategy_kept(self) -> None:
        locator = LocatorDefinition.model_validate({"strategy": "shadow", "value": "x"})
        assert locator.strategy == "shadow"

    def test_text_filter_requires_value(self) -> None:
        with pytest.raises(ValidationError, match="requires a value"):
            LocatorDefinition.model_validate(
                {"strategy": "css", "value": "li", "filter": {"type": "hasText"}}
            )

    def test_chain_nth_requires_index(self) -> None:
        with pytest.raises(ValidationError, match="requires an index"):
            ChainOperation.model_validate({"type": "nth"})

    def test_locator_is_frozen(self) -> None:
        locator = LocatorDefinition(strategy="css", value="li")
        with pytest.raises(ValidationError):
            locator.value = "ul"


class TestCoerceTextPattern:
    """Tests for regex literal coercion."""

    def test_regex_literal(self) -> None:
        pattern = coerce_text_pattern("/^Welcome/i")
        assert isinstance(pattern, re.Pattern)
        assert pattern.flags & re.IGNORECASE
        assert pattern.match("welcome back")

    def test_plain_text_unchanged(self) -> None:
        assert coerce_text_pattern("Welcome") == "Welcome"
        assert coerce_text_pattern(3) == 3


class TestSuiteLoader:
    """Tests for SuiteLoader."""

    def test_load_file(self, temp_dir: Path, sample_api_suite: dict[str, Any]) -> None:
        """Test loading a suite from disk."""
        path = temp_dir / "suite.json"
        path.write_text(json.dumps(sample_api_suite))

        suite = SuiteLoader().load_file(path)
        assert suite.suite_name == "Users API"

    def test_file_not_found(self, temp_dir: Path) -> None:
        with pytest.raises(SuiteLoadError, match="File not found"):
            SuiteLoader().load_file(temp_dir / "missing.json")

    def test_invalid_json_reports_position(self) -> None:
        """Test JSON errors carry line and column."""
        with pytest.raises(SuiteLoadError) as exc_info:
            SuiteLoader().parse_string('{\n  "suiteName": \n}', source_file="bad.json")

        assert exc_info.value.line == 3
        assert exc_info.value.source_file == "bad.json"
        assert "Invalid JSON" in str(exc_info.value)

    def test_root_must_be_object(self) -> None:
        with pytest.raises(SuiteLoadError, match="JSON object"):
            SuiteLoader().parse_string("[]")

    def test_validation_errors_listed(self) -> None:
        """Test validation errors name the offending field."""
        with pytest.raises(SuiteLoadError, match="Validation failed") as exc_info:
            SuiteLoader().parse_data({"testCases": [{"name": "tc"}]})

        assert "suiteName" in str(exc_info.value)

    def test_iter_suite_files_skips_invalid(
        self, temp_dir: Path, sample_api_suite: dict[str, Any], sample_ui_suite: dict[str, Any]
    ) -> None:
        """Test unparseable files are skipped, not fatal."""
        (temp_dir / "b.json").write_text(json.dumps(sample_api_suite))
        (temp_dir / "a.json").write_text(json.dumps(sample_ui_suite))
        (temp_dir / "broken.json").write_text("{not json")
        (temp_dir / "notes.txt").write_text("ignored")

        found = list(SuiteLoader().iter_suite_files(temp_dir))

        assert [p.name for p, _ in found] == ["a.json", "b.json"]
        assert [s.suite_name for _, s in found] == ["Login UI", "Users API"]

    def test_iter_suite_files_missing_directory(self, temp_dir: Path) -> None:
        with pytest.raises(SuiteLoadError, match="Directory not found"):
            list(SuiteLoader().iter_suite_files(temp_dir / "nowhere"))
