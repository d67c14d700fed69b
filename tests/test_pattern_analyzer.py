import pytest

from core.enums import Axis, DataPatternType, FormulaPatternType
from core.models import Grid
from stages.s2_pattern_analysis import PatternAnalyzer


def test_normalize_formula_placeholders():
    analyzer = PatternAnalyzer()

    assert analyzer.normalize_formula("=SUM($A$1:B5)+C3*$D4") == "=SUM(ABS_RANGE)+REL_REF*ABS_REF"
    assert analyzer.normalize_formula("=Sheet2!A1+1") == "=Sheet2!REL_REF+1"
    assert analyzer.normalize_formula("=LOG10(A1:A3)") == "=LOG10(RANGE)"


def test_aggregation_group():
    grid = Grid.from_rows([
        ["Revenue", "Q1", "Q2"],
        ["Product A", 100, 150],
        ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
    ])
    result = PatternAnalyzer().execute(grid)

    assert len(result.formula_patterns) == 1
    pattern = result.formula_patterns[0]
    assert pattern.type == FormulaPatternType.AGGREGATION
    assert pattern.pattern == "=SUM(RANGE)"
    assert pattern.count == 2
    assert pattern.cells == ["B3", "C3"]
    assert pattern.example == "=SUM(B2:B2)"
    assert result.data_patterns == []


def test_filled_row_is_sequential_and_reported_as_run():
    grid = Grid.from_rows([[1, 2, 3], ["=A1*2", "=B1*2", "=C1*2"]])
    patterns = PatternAnalyzer().analyze_formula_patterns(grid)

    assert {pattern.type for pattern in patterns} == {FormulaPatternType.SEQUENTIAL}
    runs = [p for p in patterns if p.description.startswith("Row-wise")]
    assert len(runs) == 1
    assert runs[0].cells == ["A2", "B2", "C2"]
    assert runs[0].description == "Row-wise sequential formulas across A2:C2"


def test_identical_references_are_repeated_not_sequential():
    grid = Grid.from_rows([[5, "=A1*2", "=A1*2", "=A1*2"]])
    patterns = PatternAnalyzer().analyze_formula_patterns(grid)

    assert [pattern.type for pattern in patterns] == [FormulaPatternType.REPEATED]
    assert patterns[0].count == 3


def test_absolute_components_stay_fixed_in_sequences():
    grid = Grid.from_rows([
        [2, "=$A$1*A2", "=$A$1*B2", "=$A$1*C2"],
        [1, 2, 3, 4],
    ])
    patterns = PatternAnalyzer().analyze_formula_patterns(grid)

    assert patterns[0].type == FormulaPatternType.SEQUENTIAL
    assert patterns[0].pattern == "=ABS_REF*REL_REF"
    assert any(p.description.startswith("Row-wise") for p in patterns)


def test_lookup_and_conditional_groups():
    grid = Grid.from_rows([
        ["=VLOOKUP(A5,D1:E3,2,FALSE)", '=IF(A1>0,"y","n")'],
        ["=VLOOKUP(A6,D1:E3,2,FALSE)", '=IF(A2>0,"y","n")'],
    ])
    types = {p.type for p in PatternAnalyzer().analyze_formula_patterns(grid)}

    assert types == {FormulaPatternType.LOOKUP, FormulaPatternType.CONDITIONAL}


def test_arithmetic_series_in_column():
    grid = Grid.from_rows([[10], [20], [30], [40]])
    patterns = PatternAnalyzer().analyze_data_patterns(grid)

    assert len(patterns) == 1
    series = patterns[0]
    assert series.type == DataPatternType.SERIES
    assert series.axis == Axis.COLUMN
    assert series.increment == 10
    assert series.cells == ["A1", "A2", "A3", "A4"]
    assert series.description == "Arithmetic series in column A (step 10)"


def test_growth_series_in_row():
    grid = Grid.from_rows([[100, 110, 121, 133.1]])
    patterns = PatternAnalyzer().analyze_data_patterns(grid)

    assert len(patterns) == 1
    assert patterns[0].type == DataPatternType.GROWTH
    assert patterns[0].axis == Axis.ROW
    assert patterns[0].ratio == pytest.approx(1.1)


def test_periodic_values():
    grid = Grid.from_rows([[1, 2, 3, 1, 2, 3]])
    patterns = PatternAnalyzer().analyze_data_patterns(grid)

    assert patterns[0].type == DataPatternType.PERIODIC
    assert patterns[0].period == 3


def test_booleans_and_text_are_not_numbers():
    grid = Grid.from_rows([[True, 1, "x", 2, 3]])
    patterns = PatternAnalyzer().analyze_data_patterns(grid)

    assert len(patterns) == 1
    assert patterns[0].cells == ["B1", "D1", "E1"]


def test_short_sequences_are_ignored():
    assert PatternAnalyzer().analyze_data_patterns(Grid.from_rows([[1, 2]])) == []
