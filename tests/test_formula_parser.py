from core.models import ConstantNode, ErrorNode, FunctionNode, OperatorNode, ReferenceNode
from formula import FormulaParser


def test_parse_function_with_range_argument():
    tree = FormulaParser().parse("=SUM(A1:A10)")

    assert isinstance(tree, FunctionNode)
    assert tree.name == "SUM"
    assert len(tree.args) == 1
    ref = tree.args[0]
    assert isinstance(ref, ReferenceNode)
    assert ref.reference == "A1:A10"
    assert ref.is_range


def test_parse_respects_operator_precedence():
    tree = FormulaParser().parse("=A1+B1*2")

    assert isinstance(tree, OperatorNode)
    assert tree.operator == "+"
    left, right = tree.operands
    assert isinstance(left, ReferenceNode) and left.reference == "A1"
    assert isinstance(right, OperatorNode) and right.operator == "*"
    assert isinstance(right.operands[1], ConstantNode)
    assert right.operands[1].value == 2


def test_exponent_is_left_associative():
    tree = FormulaParser().parse("=2^3^2")

    assert tree.operator == "^"
    assert isinstance(tree.operands[0], OperatorNode)
    assert isinstance(tree.operands[1], ConstantNode)


def test_unary_minus_and_scientific_notation():
    parser = FormulaParser()

    negated = parser.parse("=-A1")
    assert isinstance(negated, OperatorNode)
    assert negated.operator == "-"
    assert len(negated.operands) == 1

    product = parser.parse("=1.5E-3*2")
    assert product.operator == "*"
    assert product.operands[0].value == 0.0015


def test_percent_and_text_constants():
    parser = FormulaParser()

    assert parser.parse("=50%").value == 0.5

    joined = parser.parse('="a,b"&C1')
    assert joined.operator == "&"
    assert joined.operands[0].value == "a,b"
    assert joined.operands[0].value_type == "text"


def test_sheet_qualified_and_absolute_references():
    parser = FormulaParser()

    ref = parser.parse("=Sheet2!$B$3")
    assert isinstance(ref, ReferenceNode)
    assert ref.sheet == "Sheet2"
    assert ref.reference == "$B$3"
    assert ref.absolute_column and ref.absolute_row

    quoted = parser.parse("='My Sheet'!A1")
    assert quoted.sheet == "My Sheet"
    assert not quoted.absolute_column


def test_malformed_formulas_become_error_nodes():
    parser = FormulaParser()

    assert isinstance(parser.parse("=SUM(A1"), ErrorNode)
    assert isinstance(parser.parse("="), ErrorNode)
    assert isinstance(parser.parse(None), ErrorNode)


def test_deep_nesting_never_raises():
    formula = "=" + "ABS(" * 1500 + "1" + ")" * 1500
    tree = FormulaParser().parse(formula)

    assert isinstance(tree, (ErrorNode, FunctionNode))


def test_extract_references_keeps_ranges_whole():
    parser = FormulaParser()

    refs = parser.extract_references("=SUM(A1:B2)+C3")
    assert refs == ["A1:B2", "C3"]
    assert "A1" not in refs
    assert "B2" not in refs


def test_extract_references_skips_strings_and_function_names():
    parser = FormulaParser()

    assert parser.extract_references('="A1"&B2') == ["B2"]
    assert parser.extract_references("=LOG10(A1)") == ["A1"]
    assert parser.extract_references("=Sheet2!A1:A3*2") == ["Sheet2!A1:A3"]
    assert parser.extract_references("=SUM(A:A)") == ["A:A"]


def test_extract_references_handles_quoted_sheets():
    parser = FormulaParser()

    assert parser.extract_references("='Bob''s Data'!A1+'Q1 Plan'!B2:C3") == ["'Bob''s Data'!A1", "'Q1 Plan'!B2:C3"]
    assert parser.extract_references('=IF(A1="Sheet2!B1",C1,"x""D1")') == ["A1", "C1"]
    assert parser.extract_references("=Revenue*A1+TRUE") == ["A1"]
    assert parser.extract_references("=[Book2.xlsx]Sheet1!A1") == ["[Book2.xlsx]Sheet1!A1"]


def test_extract_references_on_unbalanced_formula():
    parser = FormulaParser()

    assert parser.extract_references("=SUM(A1))") == []
    assert parser.extract_references("=SUM(A1") == ["A1"]
    assert parser.extract_references("") == []


def test_extract_functions_strips_future_prefix():
    parser = FormulaParser()

    assert parser.extract_functions("=_xlfn.XLOOKUP(A1,B:B,C:C)") == ["XLOOKUP"]
    assert parser.extract_functions('=IF(A1>0,"SUM(x)",0)') == ["IF"]


def test_to_formula_restores_needed_parentheses():
    parser = FormulaParser()

    assert parser.to_formula(parser.parse("=(A1+B1)*C1")) == "(A1+B1)*C1"
    assert parser.to_formula(parser.parse("=A1-(B1-C1)")) == "A1-(B1-C1)"


def test_describe_renders_plain_english():
    parser = FormulaParser()

    assert parser.describe(parser.parse("=SUM(A1:A3)")) == "SUM of A1:A3"
    assert parser.describe(parser.parse("=A1+B1")) == "A1 plus B1"
    assert parser.describe(parser.parse("=(A1+B1)*2")) == "(A1 plus B1) times 2"
    assert parser.describe(parser.parse("=-A1")) == "negative A1"
