"""Sparse encoding: only populated cells, grouped by row"""

from __future__ import annotations

from typing import List, Optional

from config import settings
from core.enums import GridFormat
from core.models import Grid, LLMFormattedGrid, TokenOptimizationOptions

from .base import finalize, format_cell_value, grid_stats, populated_bounds


def render_sparse(grid: Grid, include_empty_cells: bool = False) -> str:
    cell_count, non_empty, _ = grid_stats(grid)
    density = non_empty / cell_count * 100 if cell_count else 0.0
    lines = [
        f"Sparse grid: {grid.address} ({grid.row_count}x{grid.col_count})",
        f"Non-empty cells: {non_empty}/{cell_count} ({density:.1f}%)",
    ]

    bounds = populated_bounds(grid)
    if bounds is None:
        return "\n".join(lines)
    min_row, min_col, max_row, max_col = bounds

    for r in range(min_row, max_row + 1):
        entries: List[str] = []
        for c in range(min_col, max_col + 1):
            address = grid.cell_address(r, c)
            formula = grid.formula_at(r, c)
            if formula is not None:
                entries.append(f"{address}={formula}")
            elif grid.has_value(r, c):
                entries.append(f"{address}={format_cell_value(grid.value_at(r, c))}")
            elif include_empty_cells:
                entries.append(f"{address}=")
        if entries:
            lines.append(f"Row {grid.origin[0] + r + 1}: " + " ".join(entries))
    return "\n".join(lines)


def encode_sparse(grid: Grid, options: Optional[TokenOptimizationOptions] = None) -> LLMFormattedGrid:
    options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
    content = render_sparse(grid, options.include_empty_cells)
    return finalize(content, GridFormat.SPARSE, grid, options)
