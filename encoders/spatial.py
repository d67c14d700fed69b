"""Compact spatial text with run collapsing and a summary fallback."""

from __future__ import annotations

import logging
from typing import List, Optional

from config import settings
from core.exceptions import SerializationError
from core.models import Grid, TokenOptimizationOptions

from .base import (
    cell_display,
    estimate_tokens,
    format_cell_value,
    grid_stats,
    populated_bounds,
    truncate_to_budget,
)
from .sparse import render_sparse
from .table import render_table

logger = logging.getLogger(__name__)


class SpatialSerializer:
    """Address-anchored text renderings of a grid"""

    FORMATS = ("compact", "table", "sparse")

    def to_llm_format(
        self,
        grid: Grid,
        options: Optional[TokenOptimizationOptions] = None,
        format: str = "compact",
    ) -> str:
        options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
        if format == "compact":
            content = self.compact(grid, options.prioritize_formulas)
        elif format == "table":
            content = render_table(grid, options.prioritize_formulas)
        elif format == "sparse":
            content = render_sparse(grid, options.include_empty_cells)
        else:
            raise SerializationError(f"Unknown spatial format: {format}", requested=format)

        content, truncated = truncate_to_budget(content, options.max_tokens)
        if truncated:
            logger.warning("Spatial %s output for %s truncated to %d tokens", format, grid.address, options.max_tokens)
        return content

    def compact(self, grid: Grid, prioritize_formulas: bool = False) -> str:
        """`Addr=value` pairs per row; equal neighbours collapse into `A1:C1=x`"""
        lines = [f"Range: {grid.address} ({grid.row_count}x{grid.col_count})"]
        bounds = populated_bounds(grid)
        if bounds is None:
            lines.append("Empty range")
            return "\n".join(lines)

        min_row, min_col, max_row, max_col = bounds
        for r in range(min_row, max_row + 1):
            entries: List[str] = []
            c = min_col
            while c <= max_col:
                if not grid.is_populated(r, c):
                    c += 1
                    continue
                text = cell_display(grid, r, c, prioritize_formulas)
                end = c
                while (
                    end + 1 <= max_col
                    and grid.is_populated(r, end + 1)
                    and cell_display(grid, r, end + 1, prioritize_formulas) == text
                    and grid.formula_at(r, end + 1) is None
                    and grid.formula_at(r, c) is None
                ):
                    end += 1
                entries.append(f"{grid.range_address(r, c, r, end)}={text}")
                c = end + 1
            if entries:
                lines.append(" ".join(entries))
        return "\n".join(lines)

    def summary(self, grid: Grid) -> str:
        cell_count, non_empty, formulas = grid_stats(grid)
        density = non_empty / cell_count * 100 if cell_count else 0.0
        lines = [
            "Summary:",
            f"- Range: {grid.address}",
            f"- Size: {grid.row_count}x{grid.col_count}",
            f"- Non-empty cells: {non_empty}",
            f"- Formula cells: {formulas}",
            f"- Data density: {density:.1f}%",
        ]
        if cell_count:
            lines.append("Sample data (corners):")
            corners = [
                ("Top-left", 0, 0),
                ("Top-right", 0, grid.col_count - 1),
                ("Bottom-left", grid.row_count - 1, 0),
                ("Bottom-right", grid.row_count - 1, grid.col_count - 1),
            ]
            seen = set()
            for label, r, c in corners:
                if (r, c) in seen:
                    continue
                seen.add((r, c))
                lines.append(
                    f"- {label} ({grid.cell_address(r, c)}): {format_cell_value(grid.value_at(r, c))}"
                )
        return "\n".join(lines)

    def optimize_for_token_limit(self, grid: Grid, max_tokens: int) -> str:
        """First of compact, sparse and summary that fits; otherwise a truncated summary"""
        candidates = [
            self.compact(grid),
            render_sparse(grid),
            self.summary(grid),
        ]
        for candidate in candidates:
            if estimate_tokens(candidate) <= max_tokens:
                return candidate
        content, _ = truncate_to_budget(candidates[-1], max_tokens)
        logger.warning("No spatial rendering of %s fits %d tokens; summary truncated", grid.address, max_tokens)
        return content
