"""Core data models for Gridlens"""

from datetime import datetime
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from utils.cells import cell_address, parse_cell, parse_origin, range_address, split_sheet
from .enums import (
    Axis, CellType, ChangeType, ComplexityBucket, ComplexityLevel,
    CompressionLevel, DataPatternType, DataScope, FillDirection,
    FormulaCategory, FormulaPatternType, GridFormat, MetricImportance,
    QueryComplexity, QueryIntent, RegionType, RelationshipType,
    RepresentationMode, SpreadsheetPurpose, TargetAudience,
    ValidationErrorType, ValidationWarningType,
)
from .exceptions import GridShapeError

CellValue = Union[bool, int, float, str, None]


# ─────────────────────────────────────────────────────────────
# Input grid
# ─────────────────────────────────────────────────────────────

class Grid(BaseModel):
    """Rectangular snapshot of a spreadsheet range"""
    values: List[List[CellValue]]
    formulas: Optional[List[List[Any]]] = None
    address: str = ""
    row_count: int = 0
    col_count: int = 0

    _origin: Tuple[int, int] = PrivateAttr(default=(0, 0))
    _sheet: Optional[str] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _check_shape(self) -> "Grid":
        rows = len(self.values)
        cols = len(self.values[0]) if rows else 0
        for idx, row in enumerate(self.values):
            if len(row) != cols:
                raise GridShapeError(f"Row {idx} has {len(row)} cells, expected {cols}", row=idx)
        if self.formulas is not None:
            if len(self.formulas) != rows:
                raise GridShapeError(f"Formula matrix has {len(self.formulas)} rows, expected {rows}")
            for idx, row in enumerate(self.formulas):
                if len(row) != cols:
                    raise GridShapeError(
                        f"Formula row {idx} has {len(row)} cells, expected {cols}", row=idx
                    )
        if self.row_count and self.row_count != rows:
            raise GridShapeError(f"row_count {self.row_count} does not match {rows} rows")
        if self.col_count and self.col_count != cols:
            raise GridShapeError(f"col_count {self.col_count} does not match {cols} columns")
        self.row_count = rows
        self.col_count = cols
        if not self.address:
            self.address = range_address(0, 0, max(rows - 1, 0), max(cols - 1, 0))
        return self

    def model_post_init(self, __context: Any) -> None:
        self._sheet, self._origin = parse_origin(self.address)

    @classmethod
    def from_rows(cls, rows: List[List[Any]], address: str = "") -> "Grid":
        """Build a grid from one matrix where `=...` strings are formulas"""
        values: List[List[CellValue]] = []
        formulas: List[List[Optional[str]]] = []
        for row in rows:
            value_row: List[CellValue] = []
            formula_row: List[Optional[str]] = []
            for cell in row:
                if isinstance(cell, str) and cell.startswith("="):
                    value_row.append(None)
                    formula_row.append(cell)
                else:
                    value_row.append(cell)
                    formula_row.append(None)
            values.append(value_row)
            formulas.append(formula_row)
        return cls(values=values, formulas=formulas, address=address)

    @property
    def origin(self) -> Tuple[int, int]:
        return self._origin

    @property
    def sheet_name(self) -> Optional[str]:
        return self._sheet

    @property
    def cell_count(self) -> int:
        return self.row_count * self.col_count

    def value_at(self, row: int, col: int) -> CellValue:
        return self.values[row][col]

    def formula_at(self, row: int, col: int) -> Optional[str]:
        if self.formulas is None:
            return None
        formula = self.formulas[row][col]
        if isinstance(formula, str) and formula.startswith("=") and len(formula) > 1:
            return formula
        return None

    def has_value(self, row: int, col: int) -> bool:
        value = self.values[row][col]
        return value is not None and value != ""

    def is_populated(self, row: int, col: int) -> bool:
        return self.has_value(row, col) or self.formula_at(row, col) is not None

    def cell_address(self, row: int, col: int) -> str:
        return cell_address(row, col, self._origin)

    def range_address(self, start_row: int, start_col: int, end_row: int, end_col: int) -> str:
        return range_address(start_row, start_col, end_row, end_col, self._origin)

    def locate(self, address: str) -> Optional[Tuple[int, int]]:
        """Grid-relative (row, col) for an A1 address, None when outside the grid"""
        sheet, address = split_sheet(address)
        if sheet is not None and sheet != self._sheet:
            return None
        parsed = parse_cell(address)
        if parsed is None:
            return None
        row, col = parsed[0] - self._origin[0], parsed[1] - self._origin[1]
        if 0 <= row < self.row_count and 0 <= col < self.col_count:
            return row, col
        return None

    def iter_cells(self) -> Iterator[Tuple[int, int, CellValue, Optional[str]]]:
        for r in range(self.row_count):
            for c in range(self.col_count):
                yield r, c, self.values[r][c], self.formula_at(r, c)

    def iter_formulas(self) -> Iterator[Tuple[int, int, str]]:
        for r, c, _, formula in self.iter_cells():
            if formula is not None:
                yield r, c, formula


# ─────────────────────────────────────────────────────────────
# Formula AST
# ─────────────────────────────────────────────────────────────

class FunctionNode(BaseModel):
    kind: Literal["function"] = "function"
    name: str
    args: List["FormulaNode"] = []


class OperatorNode(BaseModel):
    kind: Literal["operator"] = "operator"
    operator: str
    operands: List["FormulaNode"] = []


class ReferenceNode(BaseModel):
    kind: Literal["reference"] = "reference"
    reference: str
    sheet: Optional[str] = None
    is_range: bool = False
    absolute_column: bool = False
    absolute_row: bool = False
    end_absolute_column: Optional[bool] = None
    end_absolute_row: Optional[bool] = None


class ConstantNode(BaseModel):
    kind: Literal["constant"] = "constant"
    value: Union[bool, float, str]
    value_type: Literal["number", "text", "boolean"]


class ErrorNode(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    text: str = ""


FormulaNode = Annotated[
    Union[FunctionNode, OperatorNode, ReferenceNode, ConstantNode, ErrorNode],
    Field(discriminator="kind"),
]
ParsedFormula = Union[FunctionNode, OperatorNode, ReferenceNode, ConstantNode, ErrorNode]

FunctionNode.model_rebuild()
OperatorNode.model_rebuild()


# ─────────────────────────────────────────────────────────────
# Formula analysis
# ─────────────────────────────────────────────────────────────

class FormulaCharacteristics(BaseModel):
    has_nested_functions: bool = False
    has_array_operations: bool = False
    has_conditionals: bool = False
    has_lookups: bool = False
    has_aggregations: bool = False
    max_depth: int = 0
    reference_count: int = 0


class FormulaTypeInfo(BaseModel):
    """Semantic category of one formula"""
    type: FormulaCategory
    confidence: float = Field(ge=0.0, le=1.0)
    functions: List[str] = []
    complexity: ComplexityBucket
    characteristics: FormulaCharacteristics


class FormulaDescription(BaseModel):
    """Natural-language narration of one formula"""
    formula: str
    cell_address: Optional[str] = None
    summary: str
    purpose: str
    inputs: List[str] = []
    output: str
    steps: List[str] = []
    type_info: FormulaTypeInfo
    warnings: List[str] = []
    suggestions: List[str] = []


class FormulaComplexity(BaseModel):
    formula: str
    score: int
    level: ComplexityLevel
    depth: int
    function_count: int
    unique_functions: int
    reference_count: int
    conditional_count: int
    lookup_count: int
    nested_functions: int
    recommendations: List[str] = []


class DependencyNode(BaseModel):
    address: str
    formula: Optional[str] = None
    dependencies: List[str] = []
    dependents: List[str] = []
    level: int = -1


class DependencyGraph(BaseModel):
    """Per-grid graph of which formula cells read which cells"""
    nodes: Dict[str, DependencyNode] = {}
    max_depth: int = 0
    circular_references: List[List[str]] = []
    root_nodes: List[str] = []
    leaf_nodes: List[str] = []

    def dependents_of(self, address: str) -> List[str]:
        node = self.nodes.get(address)
        return node.dependents if node else []

    def dependencies_of(self, address: str) -> List[str]:
        node = self.nodes.get(address)
        return node.dependencies if node else []


class FormulaError(BaseModel):
    address: str
    formula: str
    type: ValidationErrorType
    message: str


class FormulaWarning(BaseModel):
    address: str
    formula: str
    type: ValidationWarningType
    message: str


class FormulaValidationResult(BaseModel):
    is_valid: bool
    errors: List[FormulaError] = []
    warnings: List[FormulaWarning] = []


# ─────────────────────────────────────────────────────────────
# Regions and patterns
# ─────────────────────────────────────────────────────────────

class RegionCharacteristics(BaseModel):
    has_formulas: bool = False
    is_numeric: bool = False
    is_text: bool = False
    is_date: bool = False
    is_currency: bool = False
    is_percentage: bool = False


class SemanticRegion(BaseModel):
    """Rectangular sub-range with a semantic role; rows/cols are grid-relative"""
    type: RegionType
    start_row: int
    start_col: int
    end_row: int
    end_col: int
    address: str
    confidence: float = Field(ge=0.0, le=1.0)
    characteristics: RegionCharacteristics = RegionCharacteristics()
    description: str = ""

    @property
    def area(self) -> int:
        return (self.end_row - self.start_row + 1) * (self.end_col - self.start_col + 1)

    def contains_cell(self, row: int, col: int) -> bool:
        return self.start_row <= row <= self.end_row and self.start_col <= col <= self.end_col

    def contains(self, other: "SemanticRegion") -> bool:
        return (
            self.start_row <= other.start_row
            and self.start_col <= other.start_col
            and self.end_row >= other.end_row
            and self.end_col >= other.end_col
        )

    def overlaps(self, other: "SemanticRegion") -> bool:
        return not (
            other.start_row > self.end_row
            or other.end_row < self.start_row
            or other.start_col > self.end_col
            or other.end_col < self.start_col
        )


class FormulaPattern(BaseModel):
    type: FormulaPatternType
    pattern: str
    count: int
    cells: List[str]
    example: str
    description: str = ""


class DataPattern(BaseModel):
    type: DataPatternType
    axis: Axis
    index: int
    cells: List[str]
    description: str
    increment: Optional[float] = None
    ratio: Optional[float] = None
    period: Optional[int] = None


class PatternAnalysisResult(BaseModel):
    formula_patterns: List[FormulaPattern] = []
    data_patterns: List[DataPattern] = []


class FormulaTemplate(BaseModel):
    template: str
    cells: List[str]
    direction: FillDirection
    example: str


# ─────────────────────────────────────────────────────────────
# Encoding
# ─────────────────────────────────────────────────────────────

class TokenOptimizationOptions(BaseModel):
    """Per-request encoding options"""
    max_tokens: int = Field(default=2000, gt=0)
    prioritize_formulas: bool = False
    include_empty_cells: bool = False
    compression_level: CompressionLevel = CompressionLevel.MODERATE
    target_audience: TargetAudience = TargetAudience.LLM


class LLMFormattedGrid(BaseModel):
    content: str
    format: GridFormat
    token_count: int
    truncated: bool = False
    cell_count: int = 0
    non_empty_count: int = 0
    formula_count: int = 0
    compression_ratio: Optional[float] = None


# ─────────────────────────────────────────────────────────────
# Semantic context
# ─────────────────────────────────────────────────────────────

class DataFlow(BaseModel):
    source: str
    target: str
    flow_type: str
    cells: List[str] = []


class KeyMetric(BaseModel):
    address: str
    label: Optional[str] = None
    value: CellValue = None
    formula: Optional[str] = None
    importance: MetricImportance
    reason: str


class CellRelationship(BaseModel):
    source: str
    target: str
    type: RelationshipType


class SemanticStructure(BaseModel):
    purpose: SpreadsheetPurpose
    regions: List[SemanticRegion] = []
    data_flow: List[DataFlow] = []
    key_metrics: List[KeyMetric] = []
    relationships: List[CellRelationship] = []


class HierarchyNode(BaseModel):
    address: str
    type: RegionType
    summary: str
    children: List["HierarchyNode"] = []


HierarchyNode.model_rebuild()


class CellInfo(BaseModel):
    address: str
    type: CellType
    value: CellValue = None
    formula: Optional[str] = None
    region: Optional[RegionType] = None


class StructuralRepresentation(BaseModel):
    hierarchy: List[HierarchyNode] = []
    cells: Dict[str, CellInfo] = {}


class QueryClassification(BaseModel):
    query: str = ""
    intent: QueryIntent
    scope: DataScope
    complexity: QueryComplexity
    required_modes: List[RepresentationMode]
    token_budget: int
    compression_level: CompressionLevel
    prioritize_formulas: bool = False


class LLMContext(BaseModel):
    """Bounded context bundle handed to the prompt builder"""
    spatial: str
    semantic: SemanticStructure
    structural: StructuralRepresentation
    dependencies: DependencyGraph
    formula_patterns: List[FormulaPattern] = []
    data_patterns: List[DataPattern] = []
    optimized_view: str = ""
    token_count: int = 0
    confidence: float = Field(ge=0.0, le=1.0)
    query: Optional[QueryClassification] = None
    representations: Dict[RepresentationMode, str] = {}
    mode_budget: int = 0


class StructuredGrid(BaseModel):
    """JSON-friendly summary used by the structured mode"""
    address: str
    rows: int
    cols: int
    purpose: SpreadsheetPurpose
    regions: List[SemanticRegion] = []
    formula_templates: List[FormulaTemplate] = []
    data_patterns: List[DataPattern] = []
    key_metrics: List[KeyMetric] = []


# ─────────────────────────────────────────────────────────────
# Change history and multimodal output
# ─────────────────────────────────────────────────────────────

class CellSnapshot(BaseModel):
    address: str
    value: CellValue = None
    formula: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    source: str = "snapshot"


class CellChange(BaseModel):
    address: str
    change_type: ChangeType
    old_value: CellValue = None
    new_value: CellValue = None
    old_formula: Optional[str] = None
    new_formula: Optional[str] = None
    timestamp: datetime


class DataStatistics(BaseModel):
    """Cell composition and numeric summary of a grid"""
    total_cells: int = 0
    numbers: int = 0
    text: int = 0
    formulas: int = 0
    empty: int = 0
    density: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None


class MultiModalRepresentation(BaseModel):
    primary_mode: RepresentationMode
    modes: Dict[RepresentationMode, str]
    total_tokens: int
    coverage_score: float = Field(ge=0.0, le=1.0)
    fidelity_score: float = Field(ge=0.0, le=1.0)
    query_classification: QueryClassification
    statistics: Optional[DataStatistics] = None
