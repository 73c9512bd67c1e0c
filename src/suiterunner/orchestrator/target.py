"""
Execution target addresses.

A target names what to run, at one of three levels:

    suiteId:suiteName
    suiteId:suiteName > testCaseId:testCaseName
    suiteId:suiteName > testCaseId:testCaseName > testDataIndex:testDataName

Levels are separated by `` > ``; identifiers are separated by the first ``:``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

TARGET_SEPARATOR = " > "

ACCEPTED_FORMATS = (
    '"suiteId:suiteName"',
    '"suiteId:suiteName > testCaseId:testCaseName"',
    '"suiteId:suiteName > testCaseId:testCaseName > testDataIndex:testDataName"',
)


class TargetType(StrEnum):
    SUITE = "suite"
    TEST_CASE = "testcase"
    TEST_DATA = "testdata"


class TargetFormatError(ValueError):
    """Raised when a target address cannot be parsed."""

    def __init__(self, text: str, reason: str | None = None) -> None:
        self.text = text
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Invalid target format: {text}{detail}. Expected formats:\n    "
            + "\n    ".join(ACCEPTED_FORMATS)
        )


@dataclass(frozen=True)
class ExecutionTarget:
    """A parsed target address."""

    type: TargetType
    suite_id: str
    suite_name: str
    test_case_id: str | None = None
    test_case_name: str | None = None
    test_data_index: int | None = None
    test_data_name: str | None = None

    @classmethod
    def for_suite(cls, suite_id: str, suite_name: str) -> ExecutionTarget:
        return cls(type=TargetType.SUITE, suite_id=suite_id, suite_name=suite_name)

    def describe(self) -> str:
        """Render the target back to its address form."""
        parts = [f"{self.suite_id}:{self.suite_name}"]
        if self.type in (TargetType.TEST_CASE, TargetType.TEST_DATA):
            parts.append(f"{self.test_case_id or ''}:{self.test_case_name or ''}")
        if self.type == TargetType.TEST_DATA:
            parts.append(f"{self.test_data_index}:{self.test_data_name or ''}")
        return TARGET_SEPARATOR.join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {k: (str(v) if isinstance(v, TargetType) else v) for k, v in asdict(self).items()}


def _split_pair(text: str, part: str) -> tuple[str, str]:
    if ":" not in part:
        raise TargetFormatError(text, f"'{part}' is missing ':'")
    left, right = part.split(":", 1)
    return left.strip(), right.strip()


def parse_execution_target(text: str) -> ExecutionTarget:
    """
    Parse a target address.

    Raises:
        TargetFormatError: On a wrong number of levels, a level without ``:``,
            or a non-integer test-data index
    """
    parts = [p.strip() for p in text.strip().split(TARGET_SEPARATOR)]
    if not parts or len(parts) > 3 or any(not p for p in parts):
        raise TargetFormatError(text)

    suite_id, suite_name = _split_pair(text, parts[0])
    if len(parts) == 1:
        return ExecutionTarget.for_suite(suite_id, suite_name)

    test_case_id, test_case_name = _split_pair(text, parts[1])
    if len(parts) == 2:
        return ExecutionTarget(
            type=TargetType.TEST_CASE,
            suite_id=suite_id,
            suite_name=suite_name,
            test_case_id=test_case_id,
            test_case_name=test_case_name,
        )

    raw_index, test_data_name = _split_pair(text, parts[2])
    try:
        index = int(raw_index)
    except ValueError as e:
        raise TargetFormatError(text, f"test data index '{raw_index}' is not an integer") from e

    return ExecutionTarget(
        type=TargetType.TEST_DATA,
        suite_id=suite_id,
        suite_name=suite_name,
        test_case_id=test_case_id,
        test_case_name=test_case_name,
        test_data_index=index,
        test_data_name=test_data_name,
    )
