"""
Locator resolution.

Turns a declarative ``LocatorDefinition`` into a Playwright ``Locator`` by
calling locator-factory methods only. Composition order:

1. base locator from strategy, value and options
2. legacy ``filter``, then each entry of ``filters``
3. ``chain`` operations in order
4. terminal ``index``

Each stage narrows the accumulated locator.
"""

from __future__ import annotations

from typing import Any

from suiterunner.dsl.models import (
    ChainOperation,
    ChainOperationType,
    FilterDefinition,
    FilterType,
    LocatorDefinition,
    LocatorStrategy,
    coerce_text_pattern,
)


class UnknownStrategyError(ValueError):
    """Raised for a locator strategy the resolver does not know."""

    def __init__(self, strategy: str) -> None:
        self.strategy = strategy
        super().__init__(f"Unknown locator strategy: {strategy}")


_ROLE_OPTIONS = (
    "name",
    "exact",
    "checked",
    "disabled",
    "expanded",
    "include_hidden",
    "level",
    "pressed",
    "selected",
)


def _role_kwargs(definition: LocatorDefinition) -> dict[str, Any]:
    if definition.options is None:
        return {}
    kwargs: dict[str, Any] = {}
    for name in _ROLE_OPTIONS:
        value = getattr(definition.options, name)
        if value is not None:
            kwargs[name] = coerce_text_pattern(value) if name == "name" else value
    return kwargs


def _exact_kwargs(definition: LocatorDefinition) -> dict[str, Any]:
    if definition.options is not None and definition.options.exact is not None:
        return {"exact": definition.options.exact}
    return {}


def _text_filter_kwargs(definition: LocatorDefinition) -> dict[str, Any]:
    if definition.options is None:
        return {}
    kwargs: dict[str, Any] = {}
    if definition.options.has_text is not None:
        kwargs["has_text"] = coerce_text_pattern(definition.options.has_text)
    if definition.options.has_not_text is not None:
        kwargs["has_not_text"] = coerce_text_pattern(definition.options.has_not_text)
    return kwargs


def _base_locator(definition: LocatorDefinition, root: Any) -> Any:
    value = definition.value
    match definition.strategy:
        case LocatorStrategy.ROLE:
            return root.get_by_role(value, **_role_kwargs(definition))
        case LocatorStrategy.LABEL:
            return root.get_by_label(coerce_text_pattern(value), **_exact_kwargs(definition))
        case LocatorStrategy.TEXT:
            return root.get_by_text(coerce_text_pattern(value), **_exact_kwargs(definition))
        case LocatorStrategy.PLACEHOLDER:
            return root.get_by_placeholder(coerce_text_pattern(value), **_exact_kwargs(definition))
        case LocatorStrategy.ALT_TEXT:
            return root.get_by_alt_text(coerce_text_pattern(value), **_exact_kwargs(definition))
        case LocatorStrategy.TITLE:
            return root.get_by_title(coerce_text_pattern(value), **_exact_kwargs(definition))
        case LocatorStrategy.TEST_ID:
            return root.get_by_test_id(value)
        case LocatorStrategy.CSS | LocatorStrategy.LOCATOR:
            return root.locator(value, **_text_filter_kwargs(definition))
        case LocatorStrategy.XPATH:
            return root.locator(f"xpath={value}", **_text_filter_kwargs(definition))
        case _:
            raise UnknownStrategyError(str(definition.strategy))


def apply_filter(locator: Any, filter_def: FilterDefinition, page: Any) -> Any:
    """Narrow ``locator`` by one filter; nested locators resolve against ``page``."""
    match filter_def.type:
        case FilterType.HAS_TEXT:
            return locator.filter(has_text=coerce_text_pattern(filter_def.value))
        case FilterType.HAS_NOT_TEXT:
            return locator.filter(has_not_text=coerce_text_pattern(filter_def.value))
        case FilterType.HAS:
            return locator.filter(has=resolve_locator(filter_def.locator, page))
        case FilterType.HAS_NOT:
            return locator.filter(has_not=resolve_locator(filter_def.locator, page))
        case FilterType.VISIBLE:
            return locator.filter(visible=True)
        case FilterType.HIDDEN:
            return locator.filter(visible=False)
        case _:
            raise ValueError(f"Unknown filter type: {filter_def.type}")


def _apply_chain(locator: Any, operation: ChainOperation, page: Any) -> Any:
    match operation.type:
        case ChainOperationType.LOCATOR:
            return resolve_locator(operation.locator, locator, page=page)
        case ChainOperationType.FILTER:
            return apply_filter(locator, operation.filter, page)
        case ChainOperationType.NTH:
            return locator.nth(operation.index)
        case ChainOperationType.FIRST:
            return locator.first
        case ChainOperationType.LAST:
            return locator.last
        case _:
            raise ValueError(f"Unknown chain operation: {operation.type}")


def apply_index(locator: Any, index: str | int | None) -> Any:
    if index is None:
        return locator
    if index == "first":
        return locator.first
    if index == "last":
        return locator.last
    return locator.nth(int(index))


def resolve_locator(definition: LocatorDefinition, root: Any, page: Any | None = None) -> Any:
    """
    Build a Playwright locator from a definition.

    Args:
        definition: The declarative locator
        root: Page or Locator the base locator is created from
        page: Page used for nested ``has``/``hasNot`` locators (defaults to root)

    Raises:
        UnknownStrategyError: If the strategy is not supported
    """
    page = root if page is None else page

    locator = _base_locator(definition, root)

    if definition.filter is not None:
        locator = apply_filter(locator, definition.filter, page)
    for filter_def in definition.filters:
        locator = apply_filter(locator, filter_def, page)

    for operation in definition.chain:
        locator = _apply_chain(locator, operation, page)

    return apply_index(locator, definition.index)
