import pytest

from core.enums import (
    CellType,
    MetricImportance,
    QueryIntent,
    RegionType,
    RelationshipType,
    RepresentationMode,
    SpreadsheetPurpose,
)
from core.exceptions import SerializationError, StageError
from core.interfaces import Stage
from core.models import Grid
from stages import QueryClassifier, SemanticGridBuilder


@pytest.fixture
def financial_grid():
    return Grid.from_rows([
        ["Revenue", "Q1", "Q2"],
        ["Product A", 100, 150],
        ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
    ])


class ExplodingStage(Stage):
    name = "Exploding"
    stage_number = 1

    def validate_input(self, input_data):
        return True

    def execute(self, input_data):
        raise RuntimeError("boom")


class RejectingStage(ExplodingStage):
    def validate_input(self, input_data):
        return False


def test_build_context_end_to_end(financial_grid):
    context = SemanticGridBuilder().build_context(financial_grid, "What is the total revenue?")

    assert context.semantic.purpose == SpreadsheetPurpose.FINANCIAL_MODEL
    assert [region.type for region in context.semantic.regions] == [
        RegionType.INPUT, RegionType.TOTAL, RegionType.HEADER, RegionType.CALCULATION,
    ]

    assert len(context.formula_patterns) == 1
    assert context.formula_patterns[0].cells == ["B3", "C3"]
    assert context.data_patterns == []

    graph = context.dependencies
    assert graph.dependencies_of("B3") == ["B2"]
    assert graph.dependencies_of("C3") == ["C2"]
    assert graph.circular_references == []
    assert graph.nodes["B2"].level == 0
    assert graph.nodes["C2"].level == 0
    assert graph.nodes["B3"].level == 1

    assert context.confidence == pytest.approx(0.7325)
    assert context.query.intent == QueryIntent.EXPLAIN
    assert list(context.representations) == [RepresentationMode.SEMANTIC, RepresentationMode.SPATIAL]
    assert context.token_count > 0


def test_semantic_structure_details(financial_grid):
    context = SemanticGridBuilder().build_context(financial_grid)
    semantic = context.semantic

    flow_types = {flow.flow_type for flow in semantic.data_flow}
    assert flow_types == {"input-to-total", "input-to-calculation"}
    to_total = next(flow for flow in semantic.data_flow if flow.flow_type == "input-to-total")
    assert to_total.source == "A1:C3"
    assert to_total.cells == ["B3", "C3"]

    assert [(rel.source, rel.target, rel.type) for rel in semantic.relationships] == [
        ("B3", "B2", RelationshipType.AGGREGATES),
        ("C3", "C2", RelationshipType.AGGREGATES),
    ]

    metrics = {metric.address: metric for metric in semantic.key_metrics}
    assert metrics["B3"].label == "Total"
    assert metrics["B3"].formula == "=SUM(B2:B2)"


@pytest.mark.parametrize("readers, importance", [
    (6, MetricImportance.MEDIUM),
    (11, MetricImportance.HIGH),
])
def test_widely_read_cell_is_key_metric(readers, importance):
    grid = Grid.from_rows([[5] + [f"=A1*{i}" for i in range(1, readers + 1)]])
    metrics = {metric.address: metric for metric in SemanticGridBuilder().build_context(grid).semantic.key_metrics}

    assert metrics["A1"].importance == importance
    assert metrics["A1"].reason == f"Referenced by {readers} formulas"
    assert metrics["A1"].value == 5


def test_five_readers_are_not_enough():
    grid = Grid.from_rows([[5] + [f"=A1*{i}" for i in range(1, 6)]])

    assert SemanticGridBuilder().build_context(grid).semantic.key_metrics == []


@pytest.mark.parametrize("formula, node", [
    ("=SUM(Z:Z)", "Z:Z"),
    ("=Inputs!A1*2", "Inputs!A1"),
    ("=SUM(A2:A2000)", "A2:A2000"),
])
def test_off_grid_key_metric_has_no_label(formula, node):
    grid = Grid.from_rows([[formula] * 6])
    context = SemanticGridBuilder().build_context(grid)

    metrics = {metric.address: metric for metric in context.semantic.key_metrics}
    assert metrics[node].reason == "Referenced by 6 formulas"
    assert metrics[node].label is None
    assert metrics[node].value is None
    assert grid.locate(node) is None


def test_structural_representation(financial_grid):
    context = SemanticGridBuilder().build_context(financial_grid)
    structural = context.structural

    assert len(structural.cells) == 9
    assert structural.cells["B3"].type == CellType.FORMULA
    assert structural.cells["B3"].region == RegionType.CALCULATION
    assert structural.cells["A1"].region == RegionType.HEADER
    assert structural.cells["B2"].type == CellType.NUMBER

    assert len(structural.hierarchy) == 1
    root = structural.hierarchy[0]
    assert root.type == RegionType.INPUT
    child_types = [child.type for child in root.children]
    assert child_types == [RegionType.TOTAL, RegionType.HEADER]
    assert root.children[0].children[0].type == RegionType.CALCULATION


def test_spatial_text_marks_regions(financial_grid):
    spatial = SemanticGridBuilder().build_context(financial_grid).spatial
    lines = spatial.split("\n")

    assert lines[0] == "Spatial layout (A1:C3):"
    assert lines[2].endswith("H H H")
    assert lines[3].endswith("I I I")
    assert lines[4].endswith("T C C")
    assert lines[-1].startswith("Legend:")


def test_semantic_mode_text(financial_grid):
    context = SemanticGridBuilder().build_context(financial_grid, "Explain this")
    text = context.representations[RepresentationMode.SEMANTIC]

    assert text.startswith("This range (A1:C3, 3x3) looks like a financial model.")
    assert "- Total B3 (high): Part of total row A3:C3" in text
    assert "- A1:C3 feeds A3:C3 (input-to-total, 2 cells)" in text
    assert "Key formulas:" in text


def test_validate_intent_selects_detailed_and_structured(financial_grid):
    context = SemanticGridBuilder().build_context(financial_grid, "Check for errors")

    assert list(context.representations) == [RepresentationMode.DETAILED, RepresentationMode.STRUCTURED]
    detailed = context.representations[RepresentationMode.DETAILED]
    assert "- B3: =SUM(B2:B2) | type=mathematical" in detailed
    assert '"purpose": "financial_model"' in context.representations[RepresentationMode.STRUCTURED]


def test_stage_failure_is_wrapped(financial_grid):
    builder = SemanticGridBuilder(region_detector=ExplodingStage())

    with pytest.raises(StageError) as excinfo:
        builder.build_context(financial_grid)
    assert excinfo.value.stage == 1
    assert "boom" in str(excinfo.value)


def test_rejected_input_raises_stage_error(financial_grid):
    with pytest.raises(StageError, match="Invalid input"):
        SemanticGridBuilder(region_detector=RejectingStage()).build_context(financial_grid)


def test_unknown_representation_mode(financial_grid):
    builder = SemanticGridBuilder()
    context = builder.build_context(financial_grid)

    with pytest.raises(SerializationError):
        builder.representations.build("hologram", financial_grid, context, 500)


def test_query_classification():
    classifier = QueryClassifier()

    create = classifier.classify("Add a new column")
    assert create.intent == QueryIntent.CREATE
    assert create.token_budget == 1500

    full = classifier.classify("Show me the entire sheet")
    assert full.intent == QueryIntent.ANALYZE
    assert full.token_budget == 4000
    assert full.required_modes == [RepresentationMode.COMPACT, RepresentationMode.SEMANTIC]

    assert classifier.classify("Why is this formula wrong?").prioritize_formulas
    assert classifier.classify(None, max_tokens=300).token_budget == 300
