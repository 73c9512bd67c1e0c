"""
Assertion module for API response validation.

Provides:
- JSONPath assertions over JSON bodies
- XPath assertions over XML/SOAP bodies
- JSON Schema validation
"""

from suiterunner.assertions.engine import (
    MISSING,
    AssertionFailure,
    AssertionResult,
    JsonAssertionEngine,
    SchemaValidator,
    XPathAssertionEngine,
    jsonpath_first,
    xpath_first,
)

__all__ = [
    "MISSING",
    "AssertionFailure",
    "AssertionResult",
    "JsonAssertionEngine",
    "SchemaValidator",
    "XPathAssertionEngine",
    "jsonpath_first",
    "xpath_first",
]
