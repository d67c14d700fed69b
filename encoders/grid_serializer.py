"""Format dispatch between the table, sparse and compressed encoders"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from config import settings
from core.enums import FillDirection, GridFormat
from core.exceptions import SerializationError
from core.models import FormulaTemplate, Grid, LLMFormattedGrid, TokenOptimizationOptions

from .base import finalize, grid_stats
from .compressed import compress_blocks, compression_ratio, encode_compressed
from .sparse import encode_sparse
from .table import render_table

logger = logging.getLogger(__name__)


class GridSerializer:
    """Serialize a grid in one of the LLM-facing formats"""

    SPARSE_DENSITY = 0.2
    COMPRESSION_THRESHOLD = 0.5

    def __init__(self, pattern_analyzer=None):
        if pattern_analyzer is None:
            from stages.s2_pattern_analysis import PatternAnalyzer

            pattern_analyzer = PatternAnalyzer()
        self.pattern_analyzer = pattern_analyzer

    def to_llm_format(
        self,
        grid: Grid,
        format: GridFormat = GridFormat.MARKDOWN,
        options: Optional[TokenOptimizationOptions] = None,
    ) -> LLMFormattedGrid:
        options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
        try:
            fmt = GridFormat(format)
        except ValueError:
            raise SerializationError(f"Unknown grid format: {format}", requested=str(format))

        if fmt == GridFormat.HYBRID:
            fmt = self._choose_hybrid(grid)
            logger.debug("Hybrid format for %s resolved to %s", grid.address, fmt.value)

        if fmt in (GridFormat.MARKDOWN, GridFormat.TABLE):
            return finalize(render_table(grid, options.prioritize_formulas), fmt, grid, options)
        if fmt == GridFormat.SPARSE:
            return encode_sparse(grid, options)
        if fmt == GridFormat.COMPRESSED:
            return encode_compressed(grid, options)
        raise SerializationError(f"Format {fmt.value} is not produced by GridSerializer", requested=fmt.value)

    def _choose_hybrid(self, grid: Grid) -> GridFormat:
        cell_count, non_empty, _ = grid_stats(grid)
        if cell_count and non_empty / cell_count < self.SPARSE_DENSITY:
            return GridFormat.SPARSE
        if compression_ratio(grid, compress_blocks(grid)) < self.COMPRESSION_THRESHOLD:
            return GridFormat.COMPRESSED
        return GridFormat.MARKDOWN

    def extract_formula_templates(self, grid: Grid) -> List[FormulaTemplate]:
        """Group formulas by normalized template with their fill direction"""
        groups: Dict[str, List[Tuple[int, int, str]]] = {}
        for row, col, formula in grid.iter_formulas():
            key = self.pattern_analyzer.normalize_formula(formula)
            groups.setdefault(key, []).append((row, col, formula))

        templates = []
        for key, members in groups.items():
            templates.append(FormulaTemplate(
                template=key,
                cells=[grid.cell_address(row, col) for row, col, _ in members],
                direction=self._fill_direction(members),
                example=members[0][2],
            ))
        templates.sort(key=lambda template: -len(template.cells))
        return templates

    def _fill_direction(self, members: List[Tuple[int, int, str]]) -> FillDirection:
        if len(members) < 2:
            return FillDirection.SINGLE
        rows = {member[0] for member in members}
        cols = {member[1] for member in members}
        if len(rows) == 1:
            return FillDirection.RIGHT
        if len(cols) == 1:
            return FillDirection.DOWN
        return FillDirection.BOTH
