"""Block compression: empty runs, repeated constants and arithmetic runs"""

from __future__ import annotations

from typing import Any, List, Optional, Set, Tuple

from config import settings
from core.enums import GridFormat
from core.models import Grid, LLMFormattedGrid, TokenOptimizationOptions

from .base import finalize, format_cell_value

MIN_SERIES_LENGTH = 3


def _cell_key(grid: Grid, row: int, col: int) -> Tuple[str, Any]:
    formula = grid.formula_at(row, col)
    if formula is not None:
        return "formula", formula
    if not grid.has_value(row, col):
        return "empty", None
    value = grid.value_at(row, col)
    return type(value).__name__, value


def _is_number(grid: Grid, row: int, col: int) -> bool:
    value = grid.value_at(row, col)
    return (
        grid.formula_at(row, col) is None
        and isinstance(value, (int, float))
        and not isinstance(value, bool)
    )


def _expand_block(grid: Grid, row: int, col: int, covered: Set[Tuple[int, int]]) -> Tuple[int, int]:
    """Largest rectangle of equal keys anchored at (row, col): right first, then down"""
    key = _cell_key(grid, row, col)
    end_col = col
    while (
        end_col + 1 < grid.col_count
        and (row, end_col + 1) not in covered
        and _cell_key(grid, row, end_col + 1) == key
    ):
        end_col += 1
    end_row = row
    while end_row + 1 < grid.row_count and all(
        (end_row + 1, c) not in covered and _cell_key(grid, end_row + 1, c) == key
        for c in range(col, end_col + 1)
    ):
        end_row += 1
    return end_row, end_col


def _expand_series(grid: Grid, row: int, col: int, covered: Set[Tuple[int, int]]) -> Optional[Tuple[int, float]]:
    """End column and step of a row-wise arithmetic run starting at (row, col)"""
    if col + 1 >= grid.col_count or not _is_number(grid, row, col) or not _is_number(grid, row, col + 1):
        return None
    if (row, col + 1) in covered:
        return None
    step = grid.value_at(row, col + 1) - grid.value_at(row, col)
    end_col = col + 1
    while (
        end_col + 1 < grid.col_count
        and (row, end_col + 1) not in covered
        and _is_number(grid, row, end_col + 1)
        and abs(grid.value_at(row, end_col + 1) - grid.value_at(row, end_col) - step) < 1e-9
    ):
        end_col += 1
    if end_col - col + 1 < MIN_SERIES_LENGTH:
        return None
    return end_col, step


def compress_blocks(grid: Grid) -> List[str]:
    """One record per block, in row-major order of the block's top-left cell"""
    records: List[str] = []
    covered: Set[Tuple[int, int]] = set()

    for row in range(grid.row_count):
        for col in range(grid.col_count):
            if (row, col) in covered:
                continue
            kind, value = _cell_key(grid, row, col)
            end_row, end_col = _expand_block(grid, row, col, covered)
            address = grid.range_address(row, col, end_row, end_col)

            if kind == "empty":
                records.append(f"{address}: <empty>")
            elif (end_row, end_col) != (row, col):
                records.append(f"{address}: {value if kind == 'formula' else format_cell_value(value)}")
            else:
                series = _expand_series(grid, row, col, covered)
                if series is not None:
                    end_col, step = series
                    end_row = row
                    address = grid.range_address(row, col, row, end_col)
                    records.append(
                        f"{address}: series from {format_cell_value(grid.value_at(row, col))}"
                        f" step {format_cell_value(step)}"
                    )
                else:
                    records.append(f"{address}: {value if kind == 'formula' else format_cell_value(value)}")

            for r in range(row, end_row + 1):
                for c in range(col, end_col + 1):
                    covered.add((r, c))
    return records


def compression_ratio(grid: Grid, records: Optional[List[str]] = None) -> float:
    if grid.cell_count == 0:
        return 0.0
    records = records if records is not None else compress_blocks(grid)
    return len(records) / grid.cell_count


def encode_compressed(grid: Grid, options: Optional[TokenOptimizationOptions] = None) -> LLMFormattedGrid:
    options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
    records = compress_blocks(grid)
    lines = [
        f"Compressed grid: {grid.address} ({grid.row_count}x{grid.col_count})",
        f"Blocks: {len(records)}",
    ]
    lines.extend(records)
    return finalize(
        "\n".join(lines),
        GridFormat.COMPRESSED,
        grid,
        options,
        compression_ratio=compression_ratio(grid, records),
    )
