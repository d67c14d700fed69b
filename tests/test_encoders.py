import pytest

from core.enums import CompressionLevel, FillDirection, GridFormat
from core.exceptions import SerializationError
from core.models import Grid, TokenOptimizationOptions
from encoders import (
    TRUNCATION_MARKER,
    CompressedGridBuilder,
    GridSerializer,
    SpatialSerializer,
    encode_compressed,
    encode_sparse,
    encode_table,
    estimate_tokens,
)
from encoders.compressed import compress_blocks, compression_ratio
from stages.s1_region_detection import RegionDetector
from stages.s2_pattern_analysis import PatternAnalyzer


@pytest.fixture
def financial_grid():
    return Grid.from_rows([
        ["Revenue", "Q1", "Q2"],
        ["Product A", 100, 150],
        ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
    ])


@pytest.fixture
def large_grid():
    return Grid.from_rows([[f"r{r}c{c}" for c in range(10)] for r in range(50)])


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_table_rows(financial_grid):
    result = encode_table(financial_grid)
    lines = result.content.split("\n")

    assert lines[0] == "Range: A1:C3 (3x3)"
    assert "|   | A | B | C |" in lines
    assert "| 1 | Revenue | Q1 | Q2 |" in lines
    assert "| 3 | Total | =SUM(B2:B2) | =SUM(C2:C2) |" in lines
    assert result.format == GridFormat.TABLE
    assert result.formula_count == 2
    assert not result.truncated


def test_table_caps_rows_and_columns():
    grid = Grid.from_rows([[r * 100 + c for c in range(20)] for r in range(25)])
    content = encode_table(grid, TokenOptimizationOptions(max_tokens=10000)).content

    assert "Note: showing 20 of 25 rows and 15 of 20 columns" in content
    assert "| 21 |" not in content


def test_sparse_lists_populated_cells(financial_grid):
    content = encode_sparse(financial_grid).content

    assert "Non-empty cells: 9/9 (100.0%)" in content
    assert "Row 1: A1=Revenue B1=Q1 C1=Q2" in content
    assert "Row 3: A3=Total B3==SUM(B2:B2) C3==SUM(C2:C2)" in content


def test_sparse_can_include_empty_cells():
    grid = Grid.from_rows([["a", None, "b"]])

    assert "Row 1: A1=a C1=b" in encode_sparse(grid).content
    options = TokenOptimizationOptions(include_empty_cells=True)
    assert "Row 1: A1=a B1= C1=b" in encode_sparse(grid, options).content


def test_constant_block_is_one_record():
    grid = Grid.from_rows([[5] * 4 for _ in range(3)])
    records = compress_blocks(grid)

    assert records == ["A1:D3: 5"]
    assert compression_ratio(grid, records) == pytest.approx(1 / 12)


def test_arithmetic_run_and_empty_block():
    grid = Grid.from_rows([[1, 2, 3, 4], [None, None, None, None]])

    assert compress_blocks(grid) == ["A1:D1: series from 1 step 1", "A2:D2: <empty>"]


def test_compression_ratio_of_empty_grid():
    assert compression_ratio(Grid(values=[])) == 0.0


@pytest.mark.parametrize("encode", [encode_table, encode_sparse, encode_compressed])
def test_encoders_respect_token_budget(encode, large_grid):
    result = encode(large_grid, TokenOptimizationOptions(max_tokens=100))

    assert result.truncated
    assert result.content.endswith(TRUNCATION_MARKER)
    assert result.token_count <= 100 + estimate_tokens("\n" + TRUNCATION_MARKER)


def test_hybrid_prefers_sparse_for_empty_grids():
    rows = [[None] * 10 for _ in range(10)]
    rows[4][4] = 7
    result = GridSerializer().to_llm_format(Grid.from_rows(rows), GridFormat.HYBRID)

    assert result.format == GridFormat.SPARSE


def test_hybrid_prefers_compressed_for_repetitive_grids():
    grid = Grid.from_rows([["x"] * 4 for _ in range(4)])
    result = GridSerializer().to_llm_format(grid, GridFormat.HYBRID)

    assert result.format == GridFormat.COMPRESSED
    assert result.compression_ratio == pytest.approx(1 / 16)


def test_hybrid_falls_back_to_markdown(financial_grid):
    result = GridSerializer().to_llm_format(financial_grid, GridFormat.HYBRID)

    assert result.format == GridFormat.MARKDOWN
    assert "| 1 | Revenue | Q1 | Q2 |" in result.content


def test_unknown_formats_are_rejected(financial_grid):
    with pytest.raises(SerializationError):
        GridSerializer().to_llm_format(financial_grid, "bogus")
    with pytest.raises(SerializationError):
        SpatialSerializer().to_llm_format(financial_grid, format="bogus")


def test_formula_templates(financial_grid):
    templates = GridSerializer().extract_formula_templates(financial_grid)

    assert len(templates) == 1
    assert templates[0].template == "=SUM(RANGE)"
    assert templates[0].cells == ["B3", "C3"]
    assert templates[0].direction == FillDirection.RIGHT


def test_compact_collapses_equal_values_but_not_formulas():
    serializer = SpatialSerializer()

    assert serializer.compact(Grid.from_rows([["x", "x", "x", "y"]])).split("\n")[1] == "A1:C1=x D1=y"
    assert serializer.compact(Grid.from_rows([["=Z9", "=Z9"]])).split("\n")[1] == "A1==Z9 B1==Z9"


def test_optimize_for_token_limit(financial_grid, large_grid):
    serializer = SpatialSerializer()

    assert serializer.optimize_for_token_limit(financial_grid, 500).startswith("Range:")
    assert serializer.optimize_for_token_limit(large_grid, 10).endswith(TRUNCATION_MARKER)
    assert serializer.summary(large_grid).startswith("Summary:")


@pytest.mark.parametrize("level", list(CompressionLevel))
def test_optimized_representation_header(level, financial_grid):
    regions = RegionDetector().execute(financial_grid)
    patterns = PatternAnalyzer().execute(financial_grid).formula_patterns
    content = CompressedGridBuilder().build_optimized_representation(
        financial_grid, regions, patterns, TokenOptimizationOptions(compression_level=level)
    )

    assert content.startswith("=== Spreadsheet Context ===\nRange: A1:C3\nSize: 3 rows x 3 columns")
    if level == CompressionLevel.MODERATE:
        assert "Key regions:" in content
        assert "Formula templates:" in content
    elif level == CompressionLevel.AGGRESSIVE:
        assert "Formula patterns:" in content
        assert "--- Data Summary ---\nCell composition: 2 numbers, 5 text, 2 formulas, 0 empty" in content
        assert "Data density: 100.0%\nNumeric range: [100 to 150]\nAverage: 125" in content
        assert "Product A" not in content
    else:
        assert "| 2 | Product A | 100 | 150 |" in content


def test_data_summary_without_numbers():
    grid = Grid.from_rows([["a", None], [None, "=A1"]])
    content = CompressedGridBuilder().build_optimized_representation(
        grid, [], [], TokenOptimizationOptions(compression_level=CompressionLevel.AGGRESSIVE)
    )

    assert "Cell composition: 0 numbers, 1 text, 1 formulas, 2 empty" in content
    assert "Data density: 50.0%" in content
    assert "Numeric range" not in content
