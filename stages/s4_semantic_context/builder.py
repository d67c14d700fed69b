"""Stage 4: Semantic Context - merge region, pattern and dependency analysis."""

from __future__ import annotations

import logging
import re
import time
from typing import Dict, List, Optional, Tuple

from config import settings
from core.enums import (
    CellType,
    MetricImportance,
    RegionType,
    RelationshipType,
    RepresentationMode,
    SpreadsheetPurpose,
)
from core.exceptions import GridlensError, StageError
from core.interfaces import Stage
from core.models import (
    CellInfo,
    CellRelationship,
    DataFlow,
    DependencyGraph,
    Grid,
    HierarchyNode,
    KeyMetric,
    LLMContext,
    PatternAnalysisResult,
    SemanticRegion,
    SemanticStructure,
    StructuralRepresentation,
    TokenOptimizationOptions,
)
from encoders import CompressedGridBuilder, estimate_tokens
from formula.parser import FormulaParser
from stages.s1_region_detection import RegionDetector
from stages.s2_pattern_analysis import PatternAnalyzer
from stages.s3_dependency_graph import DependencyGraphBuilder
from utils.cells import col_letter

from .query import QueryClassifier
from .representations import RepresentationBuilder

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = {"SUM", "SUMIF", "SUMIFS", "AVERAGE", "AVERAGEIF", "AVERAGEIFS", "COUNT", "COUNTA", "COUNTIF", "COUNTIFS"}
VALIDATE_FUNCTIONS = {"IF", "IFS", "IFERROR", "IFNA", "ISERROR", "ISERR"}
LOOKUP_FUNCTIONS = {"VLOOKUP", "HLOOKUP", "XLOOKUP", "LOOKUP", "INDEX", "MATCH", "XMATCH"}

FINANCIAL_PATTERN = re.compile(
    r"\b(revenue|profit|ebitda|margin|cash\s*flow|npv|irr|income|expenses?|budget|forecast|balance)\b",
    re.IGNORECASE,
)
DATE_HEADER_PATTERN = re.compile(
    r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)|^q[1-4]\b|^(19|20)\d{2}$|^fy\s?\d{2,4}$"
    r"|\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d{4}-\d{2}-\d{2}",
    re.IGNORECASE,
)

REGION_SYMBOLS = {
    RegionType.HEADER: "H",
    RegionType.INPUT: "I",
    RegionType.CALCULATION: "C",
    RegionType.TOTAL: "T",
    RegionType.DATA: "D",
    RegionType.LABEL: "L",
    RegionType.EMPTY: ".",
}


class SemanticGridBuilder:
    """Run the grid stages and assemble an LLMContext for one query"""

    SPATIAL_MAX_ROWS = 20
    SPATIAL_MAX_COLS = 20
    KEY_METRIC_DEPENDENTS = 5
    HIGH_IMPORTANCE_DEPENDENTS = 10

    def __init__(
        self,
        parser: Optional[FormulaParser] = None,
        region_detector: Optional[RegionDetector] = None,
        pattern_analyzer: Optional[PatternAnalyzer] = None,
        graph_builder: Optional[DependencyGraphBuilder] = None,
        classifier: Optional[QueryClassifier] = None,
        compressor: Optional[CompressedGridBuilder] = None,
        representations: Optional[RepresentationBuilder] = None,
    ):
        self.parser = parser or FormulaParser()
        self.region_detector = region_detector or RegionDetector()
        self.pattern_analyzer = pattern_analyzer or PatternAnalyzer(self.parser)
        self.graph_builder = graph_builder or DependencyGraphBuilder(self.parser)
        self.classifier = classifier or QueryClassifier()
        self.compressor = compressor or CompressedGridBuilder()
        self.representations = representations or RepresentationBuilder(self.parser)

    def build_context(
        self,
        grid: Grid,
        query: Optional[str] = None,
        options: Optional[TokenOptimizationOptions] = None,
        history=None,
    ) -> LLMContext:
        started = time.perf_counter()
        if grid.cell_count > settings.MAX_GRID_CELLS:
            logger.warning(
                "Grid %s has %d cells (advisory limit %d); output is capped",
                grid.address,
                grid.cell_count,
                settings.MAX_GRID_CELLS,
            )

        classification = self.classifier.classify(
            query, grid.cell_count, options.max_tokens if options else None
        )
        if options is None:
            options = TokenOptimizationOptions(
                max_tokens=classification.token_budget,
                compression_level=classification.compression_level,
                prioritize_formulas=classification.prioritize_formulas,
            )

        regions: List[SemanticRegion] = self._execute_stage(self.region_detector, grid)
        patterns: PatternAnalysisResult = self._execute_stage(self.pattern_analyzer, grid)
        graph: DependencyGraph = self._execute_stage(self.graph_builder, grid)

        semantic = SemanticStructure(
            purpose=self._detect_purpose(grid, regions),
            regions=regions,
            data_flow=self._data_flow(grid, regions, graph),
            key_metrics=self._key_metrics(grid, regions, graph),
            relationships=self._relationships(grid, graph),
        )
        structural = StructuralRepresentation(
            hierarchy=self._hierarchy(regions),
            cells=self._cell_map(grid, regions),
        )
        spatial = self._spatial_text(grid, regions)
        optimized_view = self.compressor.build_optimized_representation(
            grid, regions, patterns.formula_patterns, options
        )

        context = LLMContext(
            spatial=spatial,
            semantic=semantic,
            structural=structural,
            dependencies=graph,
            formula_patterns=patterns.formula_patterns,
            data_patterns=patterns.data_patterns,
            optimized_view=optimized_view,
            confidence=self._confidence(regions, patterns),
            query=classification,
        )

        modes = classification.required_modes
        per_mode = max(options.max_tokens // max(len(modes), 1), settings.MIN_MODE_TOKENS)
        built: Dict[RepresentationMode, str] = {
            mode: self.representations.build(mode, grid, context, per_mode, history)
            for mode in modes
        }
        token_count = (
            estimate_tokens(optimized_view)
            + estimate_tokens(spatial)
            + sum(estimate_tokens(text) for text in built.values())
        )
        context = context.model_copy(
            update={"representations": built, "mode_budget": per_mode, "token_count": token_count}
        )

        logger.debug(
            "Context for %s: %d regions, %d patterns, %d tokens, %.1f ms",
            grid.address,
            len(regions),
            len(patterns.formula_patterns) + len(patterns.data_patterns),
            token_count,
            (time.perf_counter() - started) * 1000,
        )
        return context

    def _execute_stage(self, stage: Stage, grid: Grid):
        """Execute a single stage with validation and timing"""
        if not stage.validate_input(grid):
            raise StageError(stage.stage_number, "Invalid input")

        started = time.perf_counter()
        try:
            result = stage.execute(grid)
        except GridlensError:
            raise
        except Exception as e:
            logger.exception("Stage %d (%s) failed", stage.stage_number, stage.name)
            raise StageError(stage.stage_number, f"{stage.name} failed: {e}") from e

        logger.debug(
            "Stage %d (%s) finished in %.1f ms",
            stage.stage_number,
            stage.name,
            (time.perf_counter() - started) * 1000,
        )
        return result

    # ─────────────────────────────────────────────────────────────
    # Semantic structure
    # ─────────────────────────────────────────────────────────────

    def _detect_purpose(self, grid: Grid, regions: List[SemanticRegion]) -> SpreadsheetPurpose:
        texts = [value for _, _, value, _ in grid.iter_cells() if isinstance(value, str)]
        if any(FINANCIAL_PATTERN.search(text) for text in texts):
            return SpreadsheetPurpose.FINANCIAL_MODEL

        populated = sum(1 for row, col, _, _ in grid.iter_cells() if grid.is_populated(row, col))
        formulas = sum(1 for _ in grid.iter_formulas())
        if populated and formulas / populated >= 0.3:
            return SpreadsheetPurpose.CALCULATION_WORKSHEET

        types = {region.type for region in regions}
        if RegionType.HEADER in types and RegionType.DATA in types and formulas == 0:
            return SpreadsheetPurpose.REFERENCE_TABLE

        for region in regions:
            if region.type != RegionType.HEADER:
                continue
            for col in range(region.start_col, region.end_col + 1):
                value = grid.value_at(region.start_row, col)
                if isinstance(value, str) and DATE_HEADER_PATTERN.search(value.strip()):
                    return SpreadsheetPurpose.TIME_SERIES_ANALYSIS

        if RegionType.DATA in types:
            return SpreadsheetPurpose.DATA_TABLE
        return SpreadsheetPurpose.GENERAL_SPREADSHEET

    def _data_flow(
        self, grid: Grid, regions: List[SemanticRegion], graph: DependencyGraph
    ) -> List[DataFlow]:
        flows: List[DataFlow] = []
        for source in regions:
            if source.type not in (RegionType.INPUT, RegionType.CALCULATION):
                continue

            targets: Dict[int, List[str]] = {}
            for r in range(source.start_row, source.end_row + 1):
                for c in range(source.start_col, source.end_col + 1):
                    for dependent in graph.dependents_of(grid.cell_address(r, c)):
                        position = grid.locate(dependent)
                        if position is None:
                            continue
                        for idx, target in enumerate(regions):
                            if target is source or not target.contains_cell(*position):
                                continue
                            cells = targets.setdefault(idx, [])
                            if dependent not in cells:
                                cells.append(dependent)

            for idx, cells in targets.items():
                target = regions[idx]
                flows.append(DataFlow(
                    source=source.address,
                    target=target.address,
                    flow_type=f"{source.type.value}-to-{target.type.value}",
                    cells=cells,
                ))
        return flows

    def _relationships(self, grid: Grid, graph: DependencyGraph) -> List[CellRelationship]:
        relationships = []
        for row, col, formula in grid.iter_formulas():
            address = grid.cell_address(row, col)
            functions = set(self.parser.extract_functions(formula))
            if functions & AGGREGATE_FUNCTIONS:
                kind = RelationshipType.AGGREGATES
            elif functions & VALIDATE_FUNCTIONS:
                kind = RelationshipType.VALIDATES
            elif functions & LOOKUP_FUNCTIONS:
                kind = RelationshipType.INFLUENCES
            else:
                kind = RelationshipType.DEPENDS_ON
            for dependency in graph.dependencies_of(address):
                relationships.append(CellRelationship(source=address, target=dependency, type=kind))
        return relationships

    def _key_metrics(
        self, grid: Grid, regions: List[SemanticRegion], graph: DependencyGraph
    ) -> List[KeyMetric]:
        metrics: List[KeyMetric] = []
        seen = set()

        for region in regions:
            if region.type != RegionType.TOTAL:
                continue
            for r in range(region.start_row, region.end_row + 1):
                for c in range(region.start_col, region.end_col + 1):
                    address = grid.cell_address(r, c)
                    if not grid.is_populated(r, c) or address in seen:
                        continue
                    seen.add(address)
                    metrics.append(KeyMetric(
                        address=address,
                        label=self._label_for(grid, r, c),
                        value=grid.value_at(r, c),
                        formula=grid.formula_at(r, c),
                        importance=MetricImportance.HIGH,
                        reason=f"Part of total row {region.address}",
                    ))

        for address, node in graph.nodes.items():
            count = len(node.dependents)
            if count <= self.KEY_METRIC_DEPENDENTS or address in seen:
                continue
            seen.add(address)
            position = grid.locate(address)
            metrics.append(KeyMetric(
                address=address,
                label=self._label_for(grid, *position) if position else None,
                value=grid.value_at(*position) if position else None,
                formula=node.formula,
                importance=(
                    MetricImportance.HIGH if count > self.HIGH_IMPORTANCE_DEPENDENTS else MetricImportance.MEDIUM
                ),
                reason=f"Referenced by {count} formulas",
            ))
        return metrics

    def _label_for(self, grid: Grid, row: int, col: int) -> Optional[str]:
        """Nearest text to the left, else the column's first-row text"""
        for c in range(col - 1, -1, -1):
            value = grid.value_at(row, c)
            if isinstance(value, str) and value.strip():
                return value.strip()
        if row > 0:
            value = grid.value_at(0, col)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    # ─────────────────────────────────────────────────────────────
    # Structural representation
    # ─────────────────────────────────────────────────────────────

    def _hierarchy(self, regions: List[SemanticRegion]) -> List[HierarchyNode]:
        parents: Dict[int, Optional[int]] = {}
        for i, region in enumerate(regions):
            candidates = [
                j for j, other in enumerate(regions)
                if j != i and other.contains(region) and (not region.contains(other) or j < i)
            ]
            parents[i] = min(candidates, key=lambda j: regions[j].area) if candidates else None

        def build(idx: int) -> HierarchyNode:
            region = regions[idx]
            return HierarchyNode(
                address=region.address,
                type=region.type,
                summary=region.description or f"{region.type.value} region",
                children=[build(child) for child, parent in parents.items() if parent == idx],
            )

        return [build(idx) for idx, parent in parents.items() if parent is None]

    def _cell_map(self, grid: Grid, regions: List[SemanticRegion]) -> Dict[str, CellInfo]:
        cells: Dict[str, CellInfo] = {}
        for row, col, value, formula in grid.iter_cells():
            if not grid.is_populated(row, col):
                continue
            if formula is not None:
                cell_type = CellType.FORMULA
            elif isinstance(value, bool):
                cell_type = CellType.BOOLEAN
            elif isinstance(value, (int, float)):
                cell_type = CellType.NUMBER
            else:
                cell_type = CellType.TEXT
            region = self._smallest_region(regions, row, col)
            address = grid.cell_address(row, col)
            cells[address] = CellInfo(
                address=address,
                type=cell_type,
                value=value,
                formula=formula,
                region=region.type if region else None,
            )
        return cells

    def _smallest_region(self, regions: List[SemanticRegion], row: int, col: int) -> Optional[SemanticRegion]:
        containing = [region for region in regions if region.contains_cell(row, col)]
        if not containing:
            return None
        return min(containing, key=lambda region: region.area)

    def _spatial_text(self, grid: Grid, regions: List[SemanticRegion]) -> str:
        rows = min(grid.row_count, self.SPATIAL_MAX_ROWS)
        cols = min(grid.col_count, self.SPATIAL_MAX_COLS)
        row0, col0 = grid.origin
        width = max(len(str(row0 + rows)), 2)

        lines = [f"Spatial layout ({grid.address}):"]
        lines.append(" " * (width + 1) + " ".join(col_letter(col0 + c) for c in range(cols)))
        for r in range(rows):
            symbols = []
            for c in range(cols):
                if not grid.is_populated(r, c):
                    symbols.append(".")
                    continue
                region = self._smallest_region(regions, r, c)
                symbols.append(REGION_SYMBOLS.get(region.type, "·") if region else "·")
            lines.append(f"{row0 + r + 1:>{width}} " + " ".join(symbols))
        if grid.row_count > rows or grid.col_count > cols:
            lines.append(f"(first {rows} rows and {cols} columns shown)")
        lines.append("Legend: H=header I=input C=calculation T=total D=data L=label .=empty ·=unclassified")
        return "\n".join(lines)

    def _confidence(self, regions: List[SemanticRegion], patterns: PatternAnalysisResult) -> float:
        region_confidence = sum(region.confidence for region in regions) / len(regions) if regions else 0.0
        counts = [p.count for p in patterns.formula_patterns] + [len(p.cells) for p in patterns.data_patterns]
        confidence = 0.5 + 0.3 * region_confidence
        if len(counts) > 5:
            confidence += 0.1
        if counts and sum(counts) / len(counts) > 3:
            confidence += 0.1
        return min(confidence, 1.0)
