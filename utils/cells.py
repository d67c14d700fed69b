"""A1 address helpers built on openpyxl's coordinate utilities"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from openpyxl.utils.cell import (
    column_index_from_string,
    coordinate_from_string,
    get_column_letter,
    range_boundaries,
)
from openpyxl.utils.exceptions import CellCoordinatesException

SHEET_SPLIT = re.compile(r"^(?P<sheet>'[^']+'|\[[^\]]+\][^!]*|[^!]+)!(?P<address>.+)$")


def col_letter(col_idx: int) -> str:
    """0-based column index to letters"""
    return get_column_letter(col_idx + 1)


def col_index(letters: str) -> int:
    """Column letters to 0-based index"""
    return column_index_from_string(letters.upper()) - 1


def cell_address(row: int, col: int, origin: Tuple[int, int] = (0, 0)) -> str:
    return f"{col_letter(col + origin[1])}{row + origin[0] + 1}"


def range_address(
    start_row: int,
    start_col: int,
    end_row: int,
    end_col: int,
    origin: Tuple[int, int] = (0, 0),
) -> str:
    start = cell_address(start_row, start_col, origin)
    end = cell_address(end_row, end_col, origin)
    return start if start == end else f"{start}:{end}"


def split_sheet(ref: str) -> Tuple[Optional[str], str]:
    """Split `Sheet!A1` into (sheet, address); quotes are removed from the sheet"""
    match = SHEET_SPLIT.match(ref)
    if not match:
        return None, ref
    sheet = match.group("sheet")
    if sheet.startswith("'") and sheet.endswith("'"):
        sheet = sheet[1:-1]
    return sheet, match.group("address")


def strip_absolute(ref: str) -> str:
    return ref.replace("$", "")


def parse_cell(address: str) -> Optional[Tuple[int, int]]:
    """`$B$3` -> (2, 1); None when the text is not a single cell"""
    try:
        column, row = coordinate_from_string(strip_absolute(address).upper())
    except (CellCoordinatesException, ValueError):
        return None
    return row - 1, column_index_from_string(column) - 1


def parse_origin(label: str) -> Tuple[Optional[str], Tuple[int, int]]:
    """Sheet name and 0-based top-left corner of a range label"""
    sheet, address = split_sheet(label or "A1")
    try:
        min_col, min_row, _, _ = range_boundaries(strip_absolute(address).upper())
    except (TypeError, ValueError):
        return sheet, (0, 0)
    return sheet, ((min_row or 1) - 1, (min_col or 1) - 1)


def expand_range(ref: str, limit: int) -> List[str]:
    """Expand `A1:B2` into its cells; unbounded or oversized ranges stay whole"""
    if ":" not in ref:
        return [ref]
    try:
        min_col, min_row, max_col, max_row = range_boundaries(ref.upper())
    except (TypeError, ValueError):
        return [ref]

    if None in (min_col, min_row, max_col, max_row):
        return [ref]

    total = (max_row - min_row + 1) * (max_col - min_col + 1)
    if total > limit:
        return [ref]

    expanded = []
    for row in range(min_row, max_row + 1):
        for col in range(min_col, max_col + 1):
            expanded.append(f"{get_column_letter(col)}{row}")
    return expanded
