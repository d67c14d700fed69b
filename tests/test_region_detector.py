import itertools

import pytest

from core.enums import RegionType
from core.models import Grid
from stages.s1_region_detection import RegionDetector


FINANCIAL_ROWS = [
    ["Revenue", "Q1", "Q2"],
    ["Product A", 100, 150],
    ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
]


def test_detects_header_total_and_blocks():
    regions = RegionDetector().execute(Grid.from_rows(FINANCIAL_ROWS))

    found = [(region.type, region.address) for region in regions]
    assert found == [
        (RegionType.INPUT, "A1:C3"),
        (RegionType.TOTAL, "A3:C3"),
        (RegionType.HEADER, "A1:C1"),
        (RegionType.CALCULATION, "B3:C3"),
    ]

    calculation = regions[-1]
    assert calculation.characteristics.has_formulas
    assert calculation.confidence == 0.7


def test_numeric_block_is_data_table():
    grid = Grid.from_rows([[1, 2, 3], [4, 5, 6], [7, 8, 9]])
    regions = RegionDetector().execute(grid)

    by_type = {region.type: region for region in regions}
    assert by_type[RegionType.DATA].address == "A1:C3"
    assert by_type[RegionType.DATA].characteristics.is_numeric
    assert by_type[RegionType.INPUT].address == "A1:C3"
    assert RegionType.HEADER not in by_type


def test_addresses_follow_grid_origin():
    grid = Grid.from_rows([["Month", "Sales"], ["Jan", 10]], address="Plan!C5:D6")
    regions = RegionDetector().execute(grid)

    header = next(region for region in regions if region.type == RegionType.HEADER)
    assert header.address == "C5:D5"
    assert header.start_row == 0


@pytest.mark.parametrize(
    "rows",
    [
        FINANCIAL_ROWS,
        [[1, 2, None, "Total"], [3, "=A2*2", None, "=SUM(A1:A2)"], ["Name", "Price", None, None]],
        [["Date", "Amount"], ["2024-01-01", 5], ["2024-01-02", "=B2+1"], [None, "=SUM(B2:B3)"]],
    ],
)
def test_accepted_regions_never_partially_overlap(rows):
    regions = RegionDetector().execute(Grid.from_rows(rows))

    for first, second in itertools.combinations(regions, 2):
        assert (
            not first.overlaps(second)
            or first.contains(second)
            or second.contains(first)
        )
        if first.type == second.type:
            assert not first.contains(second)
            assert not second.contains(first)


def test_empty_grid_has_no_regions():
    assert RegionDetector().execute(Grid(values=[])) == []


def test_ragged_grid_is_rejected():
    with pytest.raises(ValueError):
        Grid(values=[[1, 2], [3]])
