"""Load one worksheet range from an .xlsx into a Grid"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, List, Optional, Tuple
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.cell import range_boundaries
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.formula import ArrayFormula

from core.exceptions import WorkbookLoadError
from core.models import CellValue, Grid
from .cells import range_address

logger = logging.getLogger(__name__)

PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def load_grid(file_path: str, sheet: Optional[str] = None, cell_range: Optional[str] = None) -> Grid:
    """Read formulas and cached values for a range (default: the used range).

    The workbook is opened twice: once for formula text and once with
    ``data_only=True`` for the values Excel last calculated.
    """
    path = Path(file_path)
    if not path.exists() or not path.is_file():
        raise WorkbookLoadError(f"File not found: {file_path}", file_path=str(file_path))

    try:
        formula_book = openpyxl.load_workbook(path, data_only=False)
        value_book = openpyxl.load_workbook(path, data_only=True)
    except (InvalidFileException, BadZipFile, OSError, KeyError, ValueError) as e:
        raise WorkbookLoadError(f"Cannot open workbook {path.name}: {e}", file_path=str(file_path)) from e

    sheet_name = sheet or formula_book.active.title
    if sheet_name not in formula_book.sheetnames:
        raise WorkbookLoadError(
            f"Sheet '{sheet_name}' not found; available: {', '.join(formula_book.sheetnames)}",
            file_path=str(file_path),
        )
    formula_sheet = formula_book[sheet_name]
    value_sheet = value_book[sheet_name]

    min_row, min_col, max_row, max_col = _bounds(formula_sheet, cell_range)
    values: List[List[CellValue]] = []
    formulas: List[List[Optional[str]]] = []
    for row in range(min_row, max_row + 1):
        value_row: List[CellValue] = []
        formula_row: List[Optional[str]] = []
        for col in range(min_col, max_col + 1):
            raw = formula_sheet.cell(row=row, column=col).value
            if isinstance(raw, ArrayFormula):
                raw = raw.text
            cached = value_sheet.cell(row=row, column=col).value
            if isinstance(raw, str) and raw.startswith("="):
                formula_row.append(raw)
                value_row.append(_to_cell_value(cached))
            else:
                formula_row.append(None)
                value_row.append(_to_cell_value(raw))
        values.append(value_row)
        formulas.append(formula_row)

    address = range_address(min_row - 1, min_col - 1, max_row - 1, max_col - 1)
    quoted = sheet_name if PLAIN_SHEET_NAME.match(sheet_name) else f"'{sheet_name}'"
    logger.info("Loaded %s!%s from %s", sheet_name, address, path.name)
    return Grid(values=values, formulas=formulas, address=f"{quoted}!{address}")


def _bounds(worksheet, cell_range: Optional[str]) -> Tuple[int, int, int, int]:
    """1-based (min_row, min_col, max_row, max_col)"""
    if cell_range:
        try:
            min_col, min_row, max_col, max_row = range_boundaries(cell_range.replace("$", "").upper())
        except (TypeError, ValueError) as e:
            raise WorkbookLoadError(f"Invalid range: {cell_range}") from e
        if None in (min_col, min_row, max_col, max_row):
            raise WorkbookLoadError(f"Range must be bounded: {cell_range}")
        return min_row, min_col, max_row, max_col
    return (
        worksheet.min_row or 1,
        worksheet.min_column or 1,
        max(worksheet.max_row or 1, 1),
        max(worksheet.max_column or 1, 1),
    )


def _to_cell_value(value: Any) -> CellValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)
