"""
HTML table helpers for the table keywords.

Rows come from ``tbody tr`` (or ``tr`` when the table has no tbody). Headers
come from ``thead th`` (or the first row's ``th`` cells). Row indexes are
0-based; columns are a 0-based index or a case-insensitive header name.
"""

from __future__ import annotations

from typing import Any


class TableLookupError(LookupError):
    """Raised when a row, column or cell cannot be found."""


def table_rows(table: Any) -> Any:
    body_rows = table.locator("tbody tr")
    if body_rows.count() > 0:
        return body_rows
    return table.locator("tr")


def table_headers(table: Any) -> list[str]:
    headers = table.locator("thead th")
    if headers.count() == 0:
        headers = table.locator("tr").first.locator("th")
    return [text.strip() for text in headers.all_inner_texts()]


def row_cells(row: Any) -> Any:
    return row.locator("td, th")


def column_index(table: Any, column: str | int) -> int:
    """Resolve a column reference to a 0-based index."""
    if isinstance(column, int):
        return column
    text = str(column).strip()
    if text.lstrip("-").isdigit():
        return int(text)

    headers = [h.lower() for h in table_headers(table)]
    try:
        return headers.index(text.lower())
    except ValueError:
        raise TableLookupError(f"Column '{column}' not found in headers {headers}") from None


def _row(table: Any, row_index: int) -> Any:
    rows = table_rows(table)
    count = rows.count()
    if row_index < 0 or row_index >= count:
        raise TableLookupError(f"Row {row_index} out of range (table has {count} rows)")
    return rows.nth(row_index)


def get_cell_text(table: Any, row_index: int, column: str | int) -> str:
    cells = row_cells(_row(table, row_index))
    index = column_index(table, column)
    count = cells.count()
    if index < 0 or index >= count:
        raise TableLookupError(f"Column {index} out of range (row has {count} cells)")
    return cells.nth(index).inner_text().strip()


def get_row_texts(table: Any, row_index: int) -> list[str]:
    return [text.strip() for text in row_cells(_row(table, row_index)).all_inner_texts()]


def get_column_texts(table: Any, column: str | int) -> list[str]:
    index = column_index(table, column)
    rows = table_rows(table)
    values: list[str] = []
    for i in range(rows.count()):
        cells = row_cells(rows.nth(i))
        if index < cells.count():
            values.append(cells.nth(index).inner_text().strip())
    return values


def count_rows_containing(table: Any, text: str) -> int:
    return table_rows(table).filter(has_text=text).count()


def find_row_index(table: Any, text: str) -> int:
    """Index of the first row whose text contains ``text``."""
    rows = table_rows(table)
    for i in range(rows.count()):
        if text in rows.nth(i).inner_text():
            return i
    raise TableLookupError(f"No row contains '{text}'")


def click_header(table: Any, column: str | int) -> None:
    index = column_index(table, column)
    headers = table.locator("thead th")
    if headers.count() == 0:
        headers = table.locator("tr").first.locator("th")
    headers.nth(index).click()

