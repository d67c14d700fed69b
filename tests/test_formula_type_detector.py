from core.enums import ComplexityBucket, FormulaCategory
from formula import FormulaDescriber, FormulaTypeDetector


def test_detects_financial_formula():
    info = FormulaTypeDetector().detect("=NPV(0.1,B1:B5)")

    assert info.type == FormulaCategory.FINANCIAL
    assert info.confidence == 1.0
    assert info.functions == ["NPV"]


def test_detects_lookup_characteristics():
    info = FormulaTypeDetector().detect("=VLOOKUP(A1,B:C,2,FALSE)")

    assert info.type == FormulaCategory.LOOKUP
    assert info.characteristics.has_lookups


def test_formula_without_functions_is_unknown():
    info = FormulaTypeDetector().detect("=A1+B1")

    assert info.type == FormulaCategory.UNKNOWN
    assert info.confidence == 0.0
    assert info.characteristics.reference_count == 2


def test_unrecognised_function_is_custom():
    assert FormulaTypeDetector().detect("=MYFUNC(A1)").type == FormulaCategory.CUSTOM


def test_ties_follow_category_order():
    info = FormulaTypeDetector().detect("=IF(SUM(A1:A3)>10,1,0)")

    assert info.type == FormulaCategory.LOGICAL
    assert info.characteristics.has_nested_functions
    assert info.characteristics.has_conditionals


def test_simple_sum_bucket():
    assert FormulaTypeDetector().detect("=SUM(A1:A3)").complexity == ComplexityBucket.SIMPLE


def test_describe_sum_formula():
    description = FormulaDescriber().describe("=SUM(A1:A10)", "B11")

    assert "sum" in description.purpose.lower()
    assert "B11" in description.purpose
    assert "Range A1:A10 (multiple cells)" in description.inputs
    assert description.steps[0] == "Apply SUM function"
    assert description.type_info.type == FormulaCategory.MATHEMATICAL


def test_describe_vlookup_warns_and_suggests():
    description = FormulaDescriber().describe("=VLOOKUP(A1,B:C,2,FALSE)")

    assert "VLOOKUP without error handling may show #N/A errors" in description.warnings
    assert "Consider using XLOOKUP or INDEX/MATCH for more flexibility" in description.suggestions
    assert "Add IFERROR to handle lookup failures gracefully" in description.suggestions


def test_describe_nested_if_suggests_ifs():
    description = FormulaDescriber().describe('=IF(A1>90,"A",IF(A1>80,"B","C"))')

    assert "Replace nested IF functions with IFS or SWITCH" in description.suggestions


def test_describe_volatile_and_broken_formulas():
    describer = FormulaDescriber()

    assert any("NOW" in warning for warning in describer.describe("=NOW()").warnings)
    assert "Formula has syntax errors and will not calculate" in describer.describe("=SUM(A1").warnings


def test_quick_describe():
    describer = FormulaDescriber()

    assert describer.quick_describe("=SUM(A1:A3)").startswith("SUM")
    assert describer.quick_describe("=") == "Invalid formula"
    assert describer.quick_describe("=B2") == "References B2"
