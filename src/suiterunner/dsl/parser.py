"""
Suite loader for JSON test suite files.

Handles reading, JSON decoding, and model validation of suite documents.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from suiterunner.dsl.models import TestSuite

logger = structlog.get_logger(__name__)


class SuiteLoadError(Exception):
    """Raised when a suite file cannot be read, decoded, or validated."""

    def __init__(
        self,
        message: str,
        source_file: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        self.source_file = source_file
        self.line = line
        self.column = column
        location = ""
        if source_file:
            location = f" in {source_file}"
        if line is not None:
            location += f" at line {line}"
            if column is not None:
                location += f", column {column}"
        super().__init__(f"{message}{location}")


class SuiteLoader:
    """Loader for JSON suite files."""

    def __init__(self) -> None:
        self._log = logger.bind(component="suite_loader")

    def load_file(self, path: str | Path) -> TestSuite:
        """Load and validate a suite file."""
        file_path = Path(path)
        if not file_path.exists():
            raise SuiteLoadError(f"File not found: {file_path}")
        if not file_path.is_file():
            raise SuiteLoadError(f"Path is not a file: {file_path}")

        self._log.debug("Loading suite file", path=str(file_path))
        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise SuiteLoadError(f"Cannot read file: {e}", source_file=str(file_path)) from e
        return self.parse_string(content, source_file=str(file_path))

    def parse_string(self, content: str, source_file: str | None = None) -> TestSuite:
        """Parse JSON suite content."""
        try:
            raw_data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SuiteLoadError(
                f"Invalid JSON: {e.msg}", source_file=source_file, line=e.lineno, column=e.colno
            ) from e

        return self.parse_data(raw_data, source_file=source_file)

    def parse_data(self, raw_data: Any, source_file: str | None = None) -> TestSuite:
        """Validate an already-decoded suite document."""
        if not isinstance(raw_data, dict):
            raise SuiteLoadError("Suite root must be a JSON object", source_file=source_file)

        try:
            suite = TestSuite.model_validate(raw_data)
        except ValidationError as e:
            error_messages = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                error_messages.append(f"  {loc}: {error['msg']}")
            raise SuiteLoadError(
                "Validation failed:\n" + "\n".join(error_messages), source_file=source_file
            ) from e

        self._log.info(
            "Parsed test suite",
            suite=suite.suite_name,
            suite_id=suite.id,
            test_case_count=len(suite.test_cases),
        )
        return suite

    def iter_suite_files(self, directory: str | Path) -> Iterator[tuple[Path, TestSuite]]:
        """
        Yield ``(path, suite)`` for every loadable ``*.json`` file in a directory.

        Files that fail to load are logged and skipped.
        """
        dir_path = Path(directory)
        if not dir_path.is_dir():
            raise SuiteLoadError(f"Directory not found: {dir_path}")

        for file_path in sorted(dir_path.glob("*.json")):
            if file_path.name.startswith("."):
                continue
            try:
                suite = self.load_file(file_path)
            except SuiteLoadError as e:
                self._log.warning("Skipping unparseable suite file", path=str(file_path), error=str(e))
                continue
            yield file_path, suite
