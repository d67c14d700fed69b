"""Pipe-delimited table encoding with column letters and row numbers"""

from __future__ import annotations

from typing import Optional

from config import settings
from core.enums import GridFormat
from core.models import Grid, LLMFormattedGrid, TokenOptimizationOptions
from utils.cells import col_letter

from .base import cell_display, finalize


def render_table(
    grid: Grid,
    prioritize_formulas: bool = False,
    max_rows: Optional[int] = None,
    max_cols: Optional[int] = None,
) -> str:
    max_rows = max_rows or settings.TABLE_MAX_ROWS
    max_cols = max_cols or settings.TABLE_MAX_COLS
    rows = min(grid.row_count, max_rows)
    cols = min(grid.col_count, max_cols)
    row0, col0 = grid.origin

    lines = [f"Range: {grid.address} ({grid.row_count}x{grid.col_count})", ""]
    if rows == 0 or cols == 0:
        lines.append("Empty range")
        return "\n".join(lines)

    lines.append("|   | " + " | ".join(col_letter(col0 + c) for c in range(cols)) + " |")
    lines.append("|---|" + "---|" * cols)
    for r in range(rows):
        cells = [
            cell_display(grid, r, c, prioritize_formulas).replace("|", "\\|")
            for c in range(cols)
        ]
        lines.append(f"| {row0 + r + 1} | " + " | ".join(cells) + " |")

    if grid.row_count > rows or grid.col_count > cols:
        lines.append("")
        lines.append(
            f"Note: showing {rows} of {grid.row_count} rows and {cols} of {grid.col_count} columns"
        )
    return "\n".join(lines)


def encode_table(grid: Grid, options: Optional[TokenOptimizationOptions] = None) -> LLMFormattedGrid:
    options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
    content = render_table(grid, options.prioritize_formulas)
    return finalize(content, GridFormat.TABLE, grid, options)
