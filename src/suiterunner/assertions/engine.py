"""
Assertion engines for API responses.

Provides:
- JSONPath assertions over decoded JSON bodies
- XPath assertions over XML/SOAP bodies
- JSON Schema validation
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import structlog
from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse as jsonpath_parse
from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for
from lxml import etree

from suiterunner.dsl.models import Assertion, AssertionType

logger = structlog.get_logger(__name__)


class _Missing:
    """Sentinel for a path that resolved to nothing."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class AssertionFailure(Exception):
    """Raised when an assertion fails."""

    def __init__(
        self,
        message: str,
        expected: Any = None,
        actual: Any = None,
        assertion_type: str | None = None,
    ) -> None:
        self.message = message
        self.expected = expected
        self.actual = actual
        self.assertion_type = assertion_type
        super().__init__(message)


@dataclass
class AssertionResult:
    """Result of an assertion check."""

    passed: bool
    message: str
    expected: Any = None
    actual: Any = None


@lru_cache(maxsize=512)
def _compile_jsonpath(expression: str) -> Any:
    return jsonpath_parse(expression)


def jsonpath_first(data: Any, expression: str) -> Any:
    """
    Return the first JSONPath match in ``data``, or ``MISSING``.

    Raises:
        AssertionFailure: If the expression cannot be parsed
    """
    try:
        matches = _compile_jsonpath(expression).find(data)
    except (JSONPathError, ValueError) as e:
        raise AssertionFailure(f"Invalid JSONPath '{expression}': {e}") from e
    if not matches:
        return MISSING
    return matches[0].value


def _document_namespaces(root: Any) -> dict[str, str]:
    """Collect every prefixed namespace declared anywhere in the document."""
    namespaces: dict[str, str] = {}
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        for prefix, uri in (element.nsmap or {}).items():
            if prefix and prefix not in namespaces:
                namespaces[prefix] = uri
    return namespaces


def xpath_first(xml_text: str | bytes, expression: str) -> Any:
    """
    Evaluate an XPath expression and return the first node's text, or ``MISSING``.

    Element results yield their concatenated text content; attribute, string
    and numeric results are returned as strings.

    Raises:
        AssertionFailure: If the document or expression is invalid
    """
    raw = xml_text.encode("utf-8") if isinstance(xml_text, str) else xml_text
    try:
        root = etree.fromstring(raw, parser=etree.XMLParser(resolve_entities=False))
    except etree.XMLSyntaxError as e:
        raise AssertionFailure(f"Response is not valid XML: {e}") from e

    try:
        result = root.xpath(expression, namespaces=_document_namespaces(root))
    except etree.XPathError as e:
        raise AssertionFailure(f"Invalid XPath '{expression}': {e}") from e

    if isinstance(result, list):
        if not result:
            return MISSING
        node = result[0]
        if isinstance(node, etree._Element):
            return "".join(node.itertext())
        return str(node)
    if isinstance(result, bool):
        return js_string(result)
    if isinstance(result, float):
        return js_string(int(result) if result.is_integer() else result)
    return str(result)


def js_typeof(value: Any) -> str:
    """Name a value's type the way JavaScript's ``typeof`` would."""
    if value is MISSING:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def js_string(value: Any) -> str:
    """Render a JSON value as JavaScript string coercion would."""
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def strict_equals(actual: Any, expected: Any) -> bool:
    """
    Strict equality over JSON values.

    Booleans never equal numbers, numbers compare numerically, and containers
    compare structurally with the same rules.
    """
    if actual is MISSING or expected is MISSING:
        return actual is expected
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if isinstance(actual, int | float) and isinstance(expected, int | float):
        return actual == expected
    if isinstance(actual, dict) and isinstance(expected, dict):
        return actual.keys() == expected.keys() and all(
            strict_equals(actual[k], expected[k]) for k in actual
        )
    if isinstance(actual, list) and isinstance(expected, list):
        return len(actual) == len(expected) and all(
            strict_equals(a, e) for a, e in zip(actual, expected, strict=True)
        )
    return type(actual) is type(expected) and actual == expected


def _contains_strict(items: list[Any], value: Any) -> bool:
    return any(strict_equals(item, value) for item in items)


def _to_number(value: Any, label: str) -> float:
    if isinstance(value, bool) or value is MISSING or value is None:
        raise AssertionFailure(f"Assertion failed: {label} is not numeric ({js_string(value)})")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise AssertionFailure(
            f"Assertion failed: {label} is not numeric ({js_string(value)})"
        ) from e
    if math.isnan(number):
        raise AssertionFailure(f"Assertion failed: {label} is not numeric ({js_string(value)})")
    return number


class JsonAssertionEngine:
    """
    Evaluates assertions against a decoded JSON response body.

    The actual value is the first JSONPath match of ``jsonPath`` in the body,
    or ``MISSING`` when the path matches nothing.
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="json_assertion_engine")

    def evaluate(self, assertion: Assertion, body: Any, status_code: int) -> AssertionResult:
        """Evaluate one assertion; never raises for an assertion mismatch."""
        try:
            self.check(assertion, body, status_code)
        except AssertionFailure as e:
            return AssertionResult(
                passed=False, message=e.message, expected=e.expected, actual=e.actual
            )
        return AssertionResult(passed=True, message="ok", expected=assertion.expected)

    def check(self, assertion: Assertion, body: Any, status_code: int) -> None:
        """
        Evaluate one assertion.

        Raises:
            AssertionFailure: If the assertion does not hold
        """
        path = assertion.json_path or ""
        expected = assertion.expected

        if assertion.json_path:
            actual = jsonpath_first(body, assertion.json_path)
        elif assertion.type == AssertionType.ARRAY_OBJECT_MATCH:
            actual = body
        else:
            actual = MISSING

        def fail(message: str) -> AssertionFailure:
            return AssertionFailure(
                f"Assertion failed: {message}",
                expected=expected,
                actual=actual,
                assertion_type=str(assertion.type),
            )

        match assertion.type:
            case AssertionType.EQUALS:
                if not strict_equals(actual, expected):
                    raise fail(f"{path} expected {js_string(expected)}, got {js_string(actual)}")

            case AssertionType.NOT_EQUALS:
                if strict_equals(actual, expected):
                    raise fail(f"{path} should not equal {js_string(expected)}")

            case AssertionType.CONTAINS:
                if isinstance(actual, str):
                    if js_string(expected) not in actual:
                        raise fail(f"{path} does not contain {js_string(expected)}")
                elif isinstance(actual, list):
                    if not _contains_strict(actual, expected):
                        raise fail(f"{path} array does not contain {js_string(expected)}")
                else:
                    raise AssertionFailure(
                        "'contains' only supports string or array",
                        expected=expected,
                        actual=actual,
                        assertion_type=str(assertion.type),
                    )

            case AssertionType.STARTS_WITH:
                if not isinstance(actual, str):
                    raise fail(f"{path} is not a string ({js_typeof(actual)})")
                if not actual.startswith(js_string(expected)):
                    raise fail(f"{path} does not start with {js_string(expected)}")

            case AssertionType.ENDS_WITH:
                if not isinstance(actual, str):
                    raise fail(f"{path} is not a string ({js_typeof(actual)})")
                if not actual.endswith(js_string(expected)):
                    raise fail(f"{path} does not end with {js_string(expected)}")

            case AssertionType.GREATER_THAN:
                if not _to_number(actual, path) > _to_number(expected, "expected"):
                    raise fail(f"{path} expected > {js_string(expected)}, got {js_string(actual)}")

            case AssertionType.LESS_THAN:
                if not _to_number(actual, path) < _to_number(expected, "expected"):
                    raise fail(f"{path} expected < {js_string(expected)}, got {js_string(actual)}")

            case AssertionType.IN:
                if not isinstance(expected, list):
                    raise fail(f"'in' requires an expected array, got {js_typeof(expected)}")
                if not _contains_strict(expected, actual):
                    raise fail(f"{path} value {js_string(actual)} not in {js_string(expected)}")

            case AssertionType.NOT_IN:
                if not isinstance(expected, list):
                    raise fail(f"'notIn' requires an expected array, got {js_typeof(expected)}")
                if _contains_strict(expected, actual):
                    raise fail(f"{path} value {js_string(actual)} should not be in {js_string(expected)}")

            case AssertionType.INCLUDES_ALL:
                if not isinstance(actual, list):
                    raise fail(f"{path} is not an array ({js_typeof(actual)})")
                wanted = expected if isinstance(expected, list) else [expected]
                missing = [item for item in wanted if not _contains_strict(actual, item)]
                if missing:
                    raise fail(f"{path} is missing {js_string(missing)}")

            case AssertionType.LENGTH:
                if not isinstance(actual, str | list):
                    raise fail(f"{path} has no length ({js_typeof(actual)})")
                want = int(_to_number(expected, "expected"))
                if len(actual) != want:
                    raise fail(f"{path} length expected {want}, got {len(actual)}")

            case AssertionType.SIZE:
                if isinstance(actual, list | dict):
                    size = len(actual)
                elif actual is MISSING or actual is None:
                    size = 0
                else:
                    raise fail(f"{path} has no size ({js_typeof(actual)})")
                want = int(_to_number(expected, "expected"))
                if size != want:
                    raise fail(f"{path} size expected {want}, got {size}")

            case AssertionType.STATUS_CODE:
                want = int(_to_number(expected, "expected"))
                if status_code != want:
                    raise AssertionFailure(
                        f"Assertion failed: statusCode expected {want}, got {status_code}",
                        expected=want,
                        actual=status_code,
                        assertion_type=str(assertion.type),
                    )

            case AssertionType.TYPE:
                type_name = js_typeof(actual)
                want_type = js_string(expected)
                if want_type == "array":
                    ok = isinstance(actual, list)
                else:
                    ok = type_name == want_type
                if not ok:
                    shown = "array" if isinstance(actual, list) else type_name
                    raise fail(f"{path} type expected {want_type}, got {shown}")

            case AssertionType.EXISTS:
                if actual is MISSING:
                    raise fail(f"{path} does not exist")

            case AssertionType.REGEX:
                try:
                    pattern = re.compile(js_string(expected))
                except re.error as e:
                    raise fail(f"invalid regex {js_string(expected)}: {e}") from e
                if actual is MISSING or not pattern.search(js_string(actual)):
                    raise fail(f"{path} does not match regex {js_string(expected)}")

            case AssertionType.ARRAY_OBJECT_MATCH:
                self._check_array_object_match(assertion, actual, fail)

            case _:
                raise AssertionFailure(f"Unsupported assertion type: {assertion.type}")

    def _check_array_object_match(
        self,
        assertion: Assertion,
        actual: Any,
        fail: Callable[[str], AssertionFailure],
    ) -> None:
        path = assertion.json_path or "$"
        field = assertion.match_field or ""
        assert_field = assertion.assert_field or ""
        if not isinstance(actual, list):
            raise fail(f"{path} is not an array ({js_typeof(actual)})")

        wanted = js_string(assertion.match_value)
        element = next(
            (
                item
                for item in actual
                if isinstance(item, dict) and field in item and js_string(item[field]) == wanted
            ),
            None,
        )
        if element is None:
            raise fail(f"{path} has no element with {field} = {wanted}")

        value = element.get(assert_field, MISSING)
        if not strict_equals(value, assertion.expected):
            raise AssertionFailure(
                f"Assertion failed: {path}[{field}={wanted}].{assert_field} "
                f"expected {js_string(assertion.expected)}, got {js_string(value)}",
                expected=assertion.expected,
                actual=value,
                assertion_type=str(assertion.type),
            )

    def evaluate_all(
        self, assertions: list[Assertion], body: Any, status_code: int
    ) -> list[AssertionResult]:
        """Evaluate every assertion in order."""
        return [self.evaluate(a, body, status_code) for a in assertions]


class XPathAssertionEngine:
    """Evaluates equals/contains assertions against an XML document."""

    def __init__(self) -> None:
        self._log = logger.bind(component="xpath_assertion_engine")

    def evaluate(self, assertion: Assertion, xml_text: str | bytes) -> AssertionResult:
        """Evaluate one assertion; never raises for an assertion mismatch."""
        try:
            self.check(assertion, xml_text)
        except AssertionFailure as e:
            return AssertionResult(
                passed=False, message=e.message, expected=e.expected, actual=e.actual
            )
        return AssertionResult(passed=True, message="ok", expected=assertion.expected)

    def check(self, assertion: Assertion, xml_text: str | bytes) -> None:
        """
        Evaluate one XPath assertion.

        Raises:
            AssertionFailure: If no node matches or the value does not hold
        """
        expression = assertion.xpath_expression
        if not expression:
            raise AssertionFailure("XPath assertion requires xpathExpression")

        if assertion.type not in (AssertionType.EQUALS, AssertionType.CONTAINS):
            raise AssertionFailure(f"Unsupported XPath assertion type: {assertion.type}")

        actual = xpath_first(xml_text, expression)
        if actual is MISSING:
            raise AssertionFailure(
                f"XPath {expression} matched no nodes",
                expected=assertion.expected,
                assertion_type=str(assertion.type),
            )

        expected = js_string(assertion.expected)
        if assertion.type == AssertionType.EQUALS and actual != expected:
            raise AssertionFailure(
                f"Assertion failed: {expression} expected {expected}, got {actual}",
                expected=expected,
                actual=actual,
                assertion_type=str(assertion.type),
            )
        if assertion.type == AssertionType.CONTAINS and expected not in actual:
            raise AssertionFailure(
                f"Assertion failed: {expression} does not contain {expected}",
                expected=expected,
                actual=actual,
                assertion_type=str(assertion.type),
            )

    def evaluate_all(self, assertions: list[Assertion], xml_text: str | bytes) -> list[AssertionResult]:
        """Evaluate every assertion in order."""
        return [self.evaluate(a, xml_text) for a in assertions]


class SchemaValidator:
    """Validates response bodies against JSON Schema documents."""

    def validate(self, body: Any, schema: dict[str, Any]) -> list[str]:
        """
        Validate ``body`` against ``schema``.

        Returns:
            One ``"<path> <message>"`` string per violation (empty when valid)
        """
        validator_cls = validator_for(schema, default=Draft7Validator)
        try:
            validator_cls.check_schema(schema)
            validator = validator_cls(schema)
        except SchemaError as e:
            return [f"invalid schema: {e.message}"]

        messages = []
        for error in sorted(validator.iter_errors(body), key=lambda e: list(e.absolute_path)):
            location = "/" + "/".join(str(p) for p in error.absolute_path) if error.absolute_path else ""
            messages.append(f"{location} {error.message}".strip())
        return messages
