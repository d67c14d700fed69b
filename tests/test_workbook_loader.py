from datetime import datetime
from pathlib import Path

import pytest
from openpyxl import Workbook

from core.exceptions import WorkbookLoadError
from main import main
from utils.workbook import load_grid


@pytest.fixture
def workbook_path(tmp_path: Path) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Sheet1"

    sheet["A1"] = 10
    sheet["B1"] = "=A1*2"
    sheet["A2"] = "Label"
    sheet["B2"] = "=SUM(A1:B1)"

    other = workbook.create_sheet("My Data")
    other["A1"] = datetime(2024, 1, 31)
    other["B1"] = True

    file_path = tmp_path / "sample.xlsx"
    workbook.save(file_path)
    return file_path


def test_load_used_range(workbook_path: Path):
    grid = load_grid(str(workbook_path))

    assert grid.address == "Sheet1!A1:B2"
    assert grid.row_count == 2
    assert grid.col_count == 2
    assert grid.value_at(0, 0) == 10
    assert grid.formula_at(0, 1) == "=A1*2"
    assert grid.formula_at(1, 0) is None
    assert grid.value_at(1, 0) == "Label"


def test_load_explicit_range(workbook_path: Path):
    grid = load_grid(str(workbook_path), cell_range="B1:B2")

    assert grid.address == "Sheet1!B1:B2"
    assert grid.formula_at(1, 0) == "=SUM(A1:B1)"
    assert grid.cell_address(1, 0) == "B2"


def test_quoted_sheet_and_dates(workbook_path: Path):
    grid = load_grid(str(workbook_path), sheet="My Data")

    assert grid.address == "'My Data'!A1:B1"
    assert grid.sheet_name == "My Data"
    assert grid.value_at(0, 0) == "2024-01-31T00:00:00"
    assert grid.value_at(0, 1) is True


def test_load_errors(workbook_path: Path, tmp_path: Path):
    with pytest.raises(WorkbookLoadError):
        load_grid(str(tmp_path / "missing.xlsx"))
    with pytest.raises(WorkbookLoadError):
        load_grid(str(workbook_path), sheet="Nope")
    with pytest.raises(WorkbookLoadError):
        load_grid(str(workbook_path), cell_range="A:B")

    not_a_workbook = tmp_path / "notes.xlsx"
    not_a_workbook.write_text("plain text")
    with pytest.raises(WorkbookLoadError):
        load_grid(str(not_a_workbook))


def test_cli_single_format(workbook_path: Path, capsys):
    assert main([str(workbook_path), "--format", "sparse"]) == 0

    out = capsys.readouterr().out
    assert "Sparse grid: Sheet1!A1:B2 (2x2)" in out
    assert "B1==A1*2" in out


def test_cli_multimodal_context(workbook_path: Path, capsys):
    assert main([str(workbook_path), "--query", "Explain the layout"]) == 0

    out = capsys.readouterr().out
    assert "===== semantic =====" in out
    assert "===== spatial =====" in out
    assert "Coverage:" in out


def test_cli_reports_missing_file(tmp_path: Path, capsys):
    assert main([str(tmp_path / "missing.xlsx")]) == 1
    assert "File not found" in capsys.readouterr().out
