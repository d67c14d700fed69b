"""Per-mode renderings of an LLMContext"""

from __future__ import annotations

import logging
from typing import List, Optional

from core.enums import GridFormat, RegionType, RepresentationMode
from core.exceptions import SerializationError
from core.models import Grid, LLMContext, StructuredGrid, TokenOptimizationOptions
from encoders import GridSerializer, truncate_to_budget
from encoders.table import render_table
from formula import FormulaAnalyzer, FormulaDescriber, FormulaParser, FormulaTypeDetector
from utils.cells import col_letter

logger = logging.getLogger(__name__)

REGION_ART = {
    RegionType.HEADER: "#",
    RegionType.INPUT: "$",
    RegionType.CALCULATION: "=",
    RegionType.TOTAL: "Σ",
    RegionType.DATA: "*",
}

MAX_CHANGES = 10
MAX_KEY_FORMULAS = 5
MAP_MAX_ROWS = 20
MAP_MAX_COLS = 20


class RepresentationBuilder:
    """Render one representation mode within a token budget"""

    def __init__(
        self,
        parser: Optional[FormulaParser] = None,
        serializer: Optional[GridSerializer] = None,
    ):
        self.parser = parser or FormulaParser()
        self.detector = FormulaTypeDetector(self.parser)
        self.describer = FormulaDescriber(self.parser, self.detector)
        self.analyzer = FormulaAnalyzer(self.parser, self.detector)
        self.serializer = serializer or GridSerializer()

    def build(
        self,
        mode: RepresentationMode,
        grid: Grid,
        context: LLMContext,
        max_tokens: int,
        history=None,
    ) -> str:
        try:
            mode = RepresentationMode(mode)
        except ValueError:
            raise SerializationError(f"Unknown representation mode: {mode}", requested=str(mode))

        if mode == RepresentationMode.SPATIAL:
            content = self._spatial(grid, context, max_tokens)
        elif mode == RepresentationMode.STRUCTURED:
            content = self._structured(grid, context)
        elif mode == RepresentationMode.SEMANTIC:
            content = self._semantic(grid, context)
        elif mode == RepresentationMode.DIFFERENTIAL:
            content = self._differential(history)
        elif mode == RepresentationMode.COMPACT:
            content = context.optimized_view
        else:
            content = self._detailed(grid, context)

        content, truncated = truncate_to_budget(content, max_tokens)
        if truncated:
            logger.debug("%s representation truncated to %d tokens", mode.value, max_tokens)
        return content

    def _spatial(self, grid: Grid, context: LLMContext, max_tokens: int) -> str:
        table = self.serializer.to_llm_format(
            grid, GridFormat.MARKDOWN, TokenOptimizationOptions(max_tokens=max_tokens)
        )
        rows = min(grid.row_count, MAP_MAX_ROWS)
        cols = min(grid.col_count, MAP_MAX_COLS)
        lines = ["Region map:", "    " + "".join(col_letter(grid.origin[1] + c) for c in range(cols))]
        for r in range(rows):
            symbols = []
            for c in range(cols):
                containing = [
                    region for region in context.semantic.regions if region.contains_cell(r, c)
                ]
                if not containing:
                    symbols.append(".")
                    continue
                region = min(containing, key=lambda item: item.area)
                symbols.append(REGION_ART.get(region.type, "."))
            lines.append(f"{grid.origin[0] + r + 1:>3} " + "".join(symbols))
        lines.append("Legend: # header, $ input, = calculation, Σ total, * data, . empty")
        return table.content + "\n\n" + "\n".join(lines)

    def _structured(self, grid: Grid, context: LLMContext) -> str:
        structured = StructuredGrid(
            address=grid.address,
            rows=grid.row_count,
            cols=grid.col_count,
            purpose=context.semantic.purpose,
            regions=context.semantic.regions,
            formula_templates=self.serializer.extract_formula_templates(grid),
            data_patterns=context.data_patterns,
            key_metrics=context.semantic.key_metrics,
        )
        return structured.model_dump_json(indent=2)

    def _semantic(self, grid: Grid, context: LLMContext) -> str:
        semantic = context.semantic
        purpose = semantic.purpose.value.replace("_", " ")
        lines = [
            f"This range ({grid.address}, {grid.row_count}x{grid.col_count}) looks like a {purpose}.",
            "",
        ]

        if semantic.regions:
            lines.append("Regions:")
            for region in semantic.regions:
                lines.append(f"- {region.description} at {region.address}")
            lines.append("")

        if semantic.key_metrics:
            lines.append("Key metrics:")
            for metric in semantic.key_metrics:
                label = f"{metric.label} " if metric.label else ""
                lines.append(f"- {label}{metric.address} ({metric.importance.value}): {metric.reason}")
            lines.append("")

        if semantic.data_flow:
            lines.append("Data flow:")
            for flow in semantic.data_flow:
                lines.append(f"- {flow.source} feeds {flow.target} ({flow.flow_type}, {len(flow.cells)} cells)")
            lines.append("")

        patterns = [p.description for p in context.formula_patterns] + [p.description for p in context.data_patterns]
        if patterns:
            lines.append("Patterns:")
            lines.extend(f"- {description}" for description in patterns)
            lines.append("")

        key_formulas = self._key_formulas(grid, context)
        if key_formulas:
            lines.append("Key formulas:")
            for address, formula in key_formulas:
                lines.append(f"- {address} {formula}: {self.describer.quick_describe(formula)}")
        return "\n".join(lines).rstrip()

    def _key_formulas(self, grid: Grid, context: LLMContext) -> List[tuple]:
        formulas = [
            (grid.cell_address(row, col), formula) for row, col, formula in grid.iter_formulas()
        ]
        formulas.sort(key=lambda item: -len(context.dependencies.dependents_of(item[0])))
        return formulas[:MAX_KEY_FORMULAS]

    def _differential(self, history) -> str:
        changes = history.recent_changes(MAX_CHANGES) if history is not None else []
        if not changes:
            return "No changes tracked"
        lines = [f"Recent changes ({len(changes)}):"]
        for change in changes:
            before = change.old_formula or change.old_value
            after = change.new_formula or change.new_value
            lines.append(f"- {change.address} [{change.change_type.value}]: {before!r} -> {after!r}")
        return "\n".join(lines)

    def _detailed(self, grid: Grid, context: LLMContext) -> str:
        lines = [render_table(grid, prioritize_formulas=True), "", "Formulas:"]
        formulas = list(grid.iter_formulas())
        if not formulas:
            lines.append("- none")
        for row, col, formula in formulas:
            address = grid.cell_address(row, col)
            info = self.detector.detect(formula)
            complexity = self.analyzer.analyze_complexity(formula)
            dependents = len(context.dependencies.dependents_of(address))
            lines.append(
                f"- {address}: {formula} | type={info.type.value}"
                f" | complexity={complexity.level.value} | dependents={dependents}"
            )
        return "\n".join(lines)
