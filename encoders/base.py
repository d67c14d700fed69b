"""Token estimation, truncation and cell rendering shared by every encoder"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

from core.enums import GridFormat
from core.models import CellValue, DataStatistics, Grid, LLMFormattedGrid, TokenOptimizationOptions
from formula.parser import format_number

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... (truncated)"
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count: a quarter token per character"""
    return math.ceil(len(text) * 0.25)


def truncate_to_budget(text: str, max_tokens: int) -> Tuple[str, bool]:
    """Drop whole lines from the end until the text fits, then append the marker.

    The result never exceeds ``max_tokens`` plus the cost of one newline and
    the marker itself.
    """
    if estimate_tokens(text) <= max_tokens:
        return text, False

    kept: List[str] = []
    length = 0
    for line in text.split("\n"):
        added = len(line) + (1 if kept else 0)
        if math.ceil((length + added) * 0.25) > max_tokens:
            break
        kept.append(line)
        length += added

    if not kept:
        # a single oversized first line is cut by characters
        kept = [text[: max_tokens * CHARS_PER_TOKEN]]

    logger.debug("Truncated %d tokens of text to a %d token budget", estimate_tokens(text), max_tokens)
    return "\n".join(kept + [TRUNCATION_MARKER]), True


def format_cell_value(value: CellValue) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return format_number(float(value))
    return str(value)


def cell_display(grid: Grid, row: int, col: int, prioritize_formulas: bool = False) -> str:
    """Formula when asked for or when there is no cached value, else the value"""
    formula = grid.formula_at(row, col)
    if formula and (prioritize_formulas or not grid.has_value(row, col)):
        return formula
    return format_cell_value(grid.value_at(row, col))


def grid_stats(grid: Grid) -> Tuple[int, int, int]:
    """(cell count, non-empty count, formula count)"""
    non_empty = formulas = 0
    for _, _, value, formula in grid.iter_cells():
        if formula is not None:
            formulas += 1
        if formula is not None or (value is not None and value != ""):
            non_empty += 1
    return grid.cell_count, non_empty, formulas


def data_statistics(grid: Grid) -> DataStatistics:
    """Cell composition, density and numeric range of the grid's values"""
    stats = DataStatistics(total_cells=grid.cell_count)
    numeric: List[float] = []
    for _, _, value, formula in grid.iter_cells():
        if formula is not None:
            stats.formulas += 1
        elif value is None or value == "":
            stats.empty += 1
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            stats.numbers += 1
        else:
            stats.text += 1
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            numeric.append(float(value))

    if stats.total_cells:
        stats.density = (stats.total_cells - stats.empty) / stats.total_cells
    if numeric:
        stats.min = min(numeric)
        stats.max = max(numeric)
        stats.mean = sum(numeric) / len(numeric)
    return stats


def populated_bounds(grid: Grid) -> Optional[Tuple[int, int, int, int]]:
    """(min_row, min_col, max_row, max_col) of populated cells, None when empty"""
    rows = []
    cols = []
    for row, col, _, _ in grid.iter_cells():
        if grid.is_populated(row, col):
            rows.append(row)
            cols.append(col)
    if not rows:
        return None
    return min(rows), min(cols), max(rows), max(cols)


def finalize(
    content: str,
    fmt: GridFormat,
    grid: Grid,
    options: TokenOptimizationOptions,
    compression_ratio: Optional[float] = None,
) -> LLMFormattedGrid:
    content, truncated = truncate_to_budget(content, options.max_tokens)
    cell_count, non_empty, formulas = grid_stats(grid)
    return LLMFormattedGrid(
        content=content,
        format=fmt,
        token_count=estimate_tokens(content),
        truncated=truncated,
        cell_count=cell_count,
        non_empty_count=non_empty,
        formula_count=formulas,
        compression_ratio=compression_ratio,
    )
