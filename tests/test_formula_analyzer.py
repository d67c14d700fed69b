import pytest

from core.enums import ComplexityLevel, ValidationErrorType, ValidationWarningType
from core.models import Grid
from formula import FormulaAnalyzer
from stages.s3_dependency_graph import DependencyGraphBuilder


@pytest.mark.parametrize(
    "formula",
    [
        "=A1+B1",
        "=SUM(A1:A10)",
        "=VLOOKUP(A1,B:C,2,FALSE)",
        '=IF(A1>0,"yes","no")',
    ],
)
def test_wrapping_in_if_never_lowers_complexity(formula):
    analyzer = FormulaAnalyzer()
    base = analyzer.analyze_complexity(formula)
    wrapped = analyzer.analyze_complexity(f"=IF(A1>0,{formula[1:]},0)")

    assert wrapped.score > base.score
    assert wrapped.depth > base.depth
    assert wrapped.conditional_count == base.conditional_count + 1


def test_single_reference_is_simple():
    complexity = FormulaAnalyzer().analyze_complexity("=A1")

    assert complexity.level == ComplexityLevel.SIMPLE
    assert complexity.depth == 1
    assert complexity.reference_count == 1


def test_deeply_nested_formula_gets_recommendations():
    formula = "=IF(A1>1,IF(A2>1,IF(A3>1,IF(A4>1,IF(A5>1,1,2),3),4),5),6)"
    complexity = FormulaAnalyzer().analyze_complexity(formula)

    assert complexity.level == ComplexityLevel.VERY_COMPLEX
    assert complexity.nested_functions == 4
    assert "Replace chained conditionals with IFS or SWITCH" in complexity.recommendations


def test_dependency_graph_levels_for_acyclic_grid():
    grid = Grid.from_rows([
        ["Revenue", "Q1", "Q2"],
        ["Product A", 100, 150],
        ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
    ])
    graph = DependencyGraphBuilder().execute(grid)

    assert graph.circular_references == []
    assert graph.nodes["B3"].dependencies == ["B2"]
    assert graph.nodes["B2"].dependents == ["B3"]
    assert graph.nodes["B2"].level == 0
    assert graph.nodes["B3"].level == 1
    assert all(node.level >= 0 for node in graph.nodes.values())
    assert set(graph.root_nodes) == {"B2", "C2"}
    assert set(graph.leaf_nodes) == {"B3", "C3"}


def test_dependency_graph_chain_depth_and_ranges():
    grid = Grid.from_rows([[1, 2, "=SUM(A1:B1)", "=C1*2"]])
    graph = FormulaAnalyzer().build_dependency_graph(grid)

    assert graph.nodes["C1"].dependencies == ["A1", "B1"]
    assert graph.nodes["D1"].level == 2
    assert graph.max_depth == 2


def test_two_cell_cycle_is_reported():
    grid = Grid.from_rows([["=B1", "=A1"]])
    graph = DependencyGraphBuilder().execute(grid)

    assert len(graph.circular_references) == 1
    assert set(graph.circular_references[0]) == {"A1", "B1"}
    assert graph.nodes["A1"].level == -1
    assert graph.nodes["B1"].level == -1


def test_graph_uses_grid_origin_and_local_sheet():
    grid = Grid.from_rows([[5, "=Data!A2*2"]], address="Data!A2:B2")
    graph = DependencyGraphBuilder().execute(grid)

    assert graph.nodes["B2"].dependencies == ["A2"]


def test_oversized_range_stays_whole():
    grid = Grid.from_rows([["=SUM(A1:Z1000)"]], address="AA1")
    graph = DependencyGraphBuilder(max_range_expansion=10).execute(grid)

    assert graph.nodes["AA1"].dependencies == ["A1:Z1000"]


def test_validate_formulas_reports_errors_and_warnings():
    grid = Grid.from_rows([[
        "=SUM(A2",
        "=A1+#REF!",
        "=NOW()",
        "={1,2,3}",
        "=[Book2.xlsx]Sheet1!A1",
    ]])
    result = FormulaAnalyzer().validate_formulas(grid)

    assert not result.is_valid
    error_types = {(error.address, error.type) for error in result.errors}
    assert ("A1", ValidationErrorType.SYNTAX) in error_types
    assert ("B1", ValidationErrorType.REFERENCE) in error_types

    warning_types = {(warning.address, warning.type) for warning in result.warnings}
    assert ("C1", ValidationWarningType.VOLATILE) in warning_types
    assert ("D1", ValidationWarningType.COMPATIBILITY) in warning_types
    assert ("E1", ValidationWarningType.COMPATIBILITY) in warning_types


def test_validate_formulas_flags_cycles():
    grid = Grid.from_rows([["=B1+1", "=A1+1"]])
    result = FormulaAnalyzer().validate_formulas(grid)

    circular = [error for error in result.errors if error.type == ValidationErrorType.CIRCULAR]
    assert {error.address for error in circular} == {"A1", "B1"}


def test_clean_grid_is_valid():
    grid = Grid.from_rows([[1, 2, "=A1+B1"]])
    result = FormulaAnalyzer().validate_formulas(grid)

    assert result.is_valid
    assert result.errors == []
