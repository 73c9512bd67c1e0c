"""
Suite selection filters.

Filters are ``key -> value`` pairs (usually from ``--key=value`` CLI flags).
A suite must satisfy every filter:

- ``applicationName``: case-insensitive substring of the suite's application
- ``testType``: ``UI`` or ``API``; other values put no constraint
- anything else is a tag filter. The value is a comma-separated list; a bare
  term requires some tag map with ``tag[key] == term`` and ``!term`` forbids it.
"""

from __future__ import annotations

from collections.abc import Mapping

from suiterunner.dsl.models import SuiteType, TestSuite


def _has_tag(suite: TestSuite, key: str, value: str) -> bool:
    return any(tag.get(key) == value for tag in suite.tags)


def suite_matches_filters(suite: TestSuite, filters: Mapping[str, str] | None) -> bool:
    """Check whether ``suite`` satisfies every filter."""
    for key, raw_value in (filters or {}).items():
        value = str(raw_value)
        match key:
            case "applicationName":
                if not suite.application_name or value.lower() not in suite.application_name.lower():
                    return False

            case "testType":
                if value in (SuiteType.UI, SuiteType.API) and suite.type != value:
                    return False

            case _:
                for term in (t.strip() for t in value.split(",")):
                    negated = term.startswith("!")
                    tag_value = term[1:] if negated else term
                    present = _has_tag(suite, key, tag_value)
                    if present == negated:
                        return False
    return True


def describe_filters(filters: Mapping[str, str]) -> str:
    return ", ".join(f"{k}={v}" for k, v in filters.items())
