"""Region-aware compressed context for the `compact` representation."""

from __future__ import annotations

import logging
from typing import List, Optional

from config import settings
from core.enums import CompressionLevel, RegionType
from core.models import FormulaPattern, Grid, SemanticRegion, TokenOptimizationOptions

from .base import cell_display, data_statistics, format_cell_value, truncate_to_budget
from .grid_serializer import GridSerializer
from .table import render_table

logger = logging.getLogger(__name__)

REGION_PRIORITY = {
    RegionType.TOTAL: 3,
    RegionType.HEADER: 2,
    RegionType.CALCULATION: 1,
    RegionType.DATA: 0,
}


class CompressedGridBuilder:
    """Builds the optimized view at the requested compression level"""

    TOP_REGIONS = 5
    TOP_PATTERNS = 5
    SAMPLE_CELLS = 3

    def __init__(self, serializer: Optional[GridSerializer] = None):
        self.serializer = serializer or GridSerializer()

    def build_optimized_representation(
        self,
        grid: Grid,
        regions: List[SemanticRegion],
        formula_patterns: List[FormulaPattern],
        options: Optional[TokenOptimizationOptions] = None,
    ) -> str:
        options = options or TokenOptimizationOptions(max_tokens=settings.DEFAULT_MAX_TOKENS)
        lines = [
            "=== Spreadsheet Context ===",
            f"Range: {grid.address}",
            f"Size: {grid.row_count} rows x {grid.col_count} columns",
            "",
        ]

        if options.compression_level == CompressionLevel.AGGRESSIVE:
            lines.extend(self._region_summary(regions))
            lines.extend(self._pattern_summary(formula_patterns))
            lines.extend(self._data_summary(grid))
        elif options.compression_level == CompressionLevel.MINIMAL:
            lines.append(render_table(grid, options.prioritize_formulas))
            lines.append("")
            lines.extend(self._region_summary(regions))
        else:
            lines.extend(self._key_regions(grid, regions, options.prioritize_formulas))
            lines.extend(self._templates(grid))

        content, truncated = truncate_to_budget("\n".join(lines).rstrip(), options.max_tokens)
        if truncated:
            logger.warning(
                "Optimized view of %s truncated to %d tokens (%s)",
                grid.address,
                options.max_tokens,
                options.compression_level.value,
            )
        return content

    def _region_summary(self, regions: List[SemanticRegion]) -> List[str]:
        if not regions:
            return ["Regions: none detected", ""]
        lines = [f"Regions ({len(regions)}):"]
        for region in regions:
            lines.append(f"- {region.type.value} {region.address}: {region.description}")
        lines.append("")
        return lines

    def _pattern_summary(self, patterns: List[FormulaPattern]) -> List[str]:
        if not patterns:
            return []
        ranked = sorted(patterns, key=lambda pattern: -pattern.count)[: self.TOP_PATTERNS]
        lines = ["Formula patterns:"]
        for pattern in ranked:
            lines.append(f"- {pattern.type.value} x{pattern.count}: {pattern.pattern} (e.g. {pattern.cells[0]})")
        lines.append("")
        return lines

    def _key_regions(self, grid: Grid, regions: List[SemanticRegion], prioritize_formulas: bool) -> List[str]:
        ranked = sorted(
            regions,
            key=lambda region: (-REGION_PRIORITY.get(region.type, -1), -region.confidence),
        )[: self.TOP_REGIONS]
        if not ranked:
            return ["Key regions: none detected", ""]

        lines = ["Key regions:"]
        for region in ranked:
            lines.append(f"- {region.type.value} {region.address}: {region.description}")
            samples = []
            for r in range(region.start_row, region.end_row + 1):
                for c in range(region.start_col, region.end_col + 1):
                    if len(samples) >= self.SAMPLE_CELLS:
                        break
                    if grid.is_populated(r, c):
                        samples.append(f"{grid.cell_address(r, c)}={cell_display(grid, r, c, prioritize_formulas)}")
            if samples:
                lines.append("  " + ", ".join(samples))
        lines.append("")
        return lines

    def _templates(self, grid: Grid) -> List[str]:
        templates = self.serializer.extract_formula_templates(grid)
        if not templates:
            return []
        lines = ["Formula templates:"]
        for template in templates[: self.TOP_PATTERNS]:
            cells = ", ".join(template.cells[:5])
            if len(template.cells) > 5:
                cells += f" ... ({len(template.cells)} cells)"
            lines.append(f"- {template.template} [{template.direction.value}] in {cells}")
        return lines

    def _data_summary(self, grid: Grid) -> List[str]:
        """Statistics stand in for raw values at aggressive compression"""
        stats = data_statistics(grid)
        lines = [
            "--- Data Summary ---",
            f"Cell composition: {stats.numbers} numbers, {stats.text} text, "
            f"{stats.formulas} formulas, {stats.empty} empty",
            f"Data density: {stats.density * 100:.1f}%",
        ]
        if stats.mean is not None:
            lines.append(f"Numeric range: [{format_cell_value(stats.min)} to {format_cell_value(stats.max)}]")
            lines.append(f"Average: {format_cell_value(round(stats.mean, 2))}")
        return lines
