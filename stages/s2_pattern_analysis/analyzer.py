"""Stage 2: Pattern Analysis - repeated formula templates and numeric series."""

from __future__ import annotations

import logging
import re
import time
from typing import Dict, List, Optional, Sequence, Tuple

from core.enums import Axis, DataPatternType, FormulaPatternType
from core.interfaces import Stage
from core.models import (
    DataPattern,
    FormulaPattern,
    Grid,
    PatternAnalysisResult,
    ReferenceNode,
)
from formula.parser import SHEET, FormulaParser, children, format_number
from utils.cells import col_index, col_letter

logger = logging.getLogger(__name__)

# (column absolute, column index, row absolute, row index); missing axes are None
Endpoint = Tuple[bool, Optional[int], bool, Optional[int]]


class PatternAnalyzer(Stage[Grid, PatternAnalysisResult]):
    """Find repeating formula templates and numeric sequences."""

    MIN_GROUP_SIZE = 2
    MIN_RUN_LENGTH = 3
    MIN_SEQUENCE_LENGTH = 3
    TOLERANCE = 0.01

    RANGE_PATTERN = re.compile(
        rf"(?<![A-Za-z0-9_.$])(?P<sheet>{SHEET}!)?"
        r"(?P<start>\$?[A-Za-z]{1,3}\$?\d+):(?P<end>\$?[A-Za-z]{1,3}\$?\d+)"
        r"(?![A-Za-z0-9_(!])"
    )
    CELL_PATTERN = re.compile(
        rf"(?<![A-Za-z0-9_.$])(?P<sheet>{SHEET}!)?"
        r"(?P<cell>\$?[A-Za-z]{1,3}\$?\d+)"
        r"(?![A-Za-z0-9_(!])"
    )
    ENDPOINT_PATTERN = re.compile(r"^(\$?)([A-Za-z]{0,3})(\$?)(\d*)$")

    AGGREGATION_FUNCTIONS = {
        "SUM", "SUMIF", "SUMIFS", "SUMPRODUCT", "AVERAGE", "AVERAGEIF", "AVERAGEIFS",
        "COUNT", "COUNTA", "COUNTIF", "COUNTIFS", "MAX", "MAXIFS", "MIN", "MINIFS",
    }
    LOOKUP_FUNCTIONS = {"VLOOKUP", "HLOOKUP", "XLOOKUP", "LOOKUP", "INDEX", "MATCH", "XMATCH"}
    CONDITIONAL_FUNCTIONS = {"IF", "IFS", "IFERROR", "IFNA", "SWITCH"}

    def __init__(self, parser: Optional[FormulaParser] = None):
        self.parser = parser or FormulaParser()

    @property
    def name(self) -> str:
        return "Pattern Analysis"

    @property
    def stage_number(self) -> int:
        return 2

    def validate_input(self, input_data: Grid) -> bool:
        return isinstance(input_data, Grid)

    def execute(self, input_data: Grid) -> PatternAnalysisResult:
        started = time.perf_counter()
        result = PatternAnalysisResult(
            formula_patterns=self.analyze_formula_patterns(input_data),
            data_patterns=self.analyze_data_patterns(input_data),
        )
        logger.debug(
            "Patterns in %s: %d formula, %d data, %.1f ms",
            input_data.address,
            len(result.formula_patterns),
            len(result.data_patterns),
            (time.perf_counter() - started) * 1000,
        )
        return result

    # ─────────────────────────────────────────────────────────────
    # Formula patterns
    # ─────────────────────────────────────────────────────────────

    def normalize_formula(self, formula: str) -> str:
        """Replace references with positional placeholders"""

        def replace_range(match: re.Match) -> str:
            absolute = "$" in match.group("start") or "$" in match.group("end")
            return (match.group("sheet") or "") + ("ABS_RANGE" if absolute else "RANGE")

        def replace_cell(match: re.Match) -> str:
            absolute = "$" in match.group("cell")
            return (match.group("sheet") or "") + ("ABS_REF" if absolute else "REL_REF")

        normalized = self.RANGE_PATTERN.sub(replace_range, formula)
        return self.CELL_PATTERN.sub(replace_cell, normalized)

    def analyze_formula_patterns(self, grid: Grid) -> List[FormulaPattern]:
        groups: Dict[str, List[Tuple[int, int, str]]] = {}
        for row, col, formula in grid.iter_formulas():
            groups.setdefault(self.normalize_formula(formula), []).append((row, col, formula))

        patterns: List[FormulaPattern] = []
        for key, members in groups.items():
            if len(members) < self.MIN_GROUP_SIZE:
                continue
            pattern_type = self._classify_group(key, members)
            cells = [grid.cell_address(row, col) for row, col, _ in members]
            patterns.append(FormulaPattern(
                type=pattern_type,
                pattern=key,
                count=len(members),
                cells=cells,
                example=members[0][2],
                description=self._describe_group(pattern_type, cells),
            ))

        patterns.extend(self._find_row_runs(grid))
        return patterns

    def _classify_group(self, key: str, members: List[Tuple[int, int, str]]) -> FormulaPatternType:
        functions = set(self.parser.extract_functions(key))
        if functions & self.AGGREGATION_FUNCTIONS:
            return FormulaPatternType.AGGREGATION
        if functions & self.LOOKUP_FUNCTIONS:
            return FormulaPatternType.LOOKUP
        if functions & self.CONDITIONAL_FUNCTIONS:
            return FormulaPatternType.CONDITIONAL
        if self._is_sequential_group(members):
            return FormulaPatternType.SEQUENTIAL
        return FormulaPatternType.REPEATED

    def _is_sequential_group(self, members: List[Tuple[int, int, str]]) -> bool:
        ordered = sorted(members, key=lambda member: (member[0], member[1]))
        rows = {member[0] for member in ordered}
        cols = {member[1] for member in ordered}
        base_row, base_col, base_formula = ordered[0]

        if len(rows) == 1:
            contiguous = all(member[1] == base_col + idx for idx, member in enumerate(ordered))
        elif len(cols) == 1:
            contiguous = all(member[0] == base_row + idx for idx, member in enumerate(ordered))
        else:
            return False
        if not contiguous:
            return False

        base_refs = self._reference_endpoints(base_formula)
        if not base_refs:
            return False
        return all(
            self._offsets_consistent(base_refs, self._reference_endpoints(formula), row - base_row, col - base_col)
            for row, col, formula in ordered[1:]
        )

    def _find_row_runs(self, grid: Grid) -> List[FormulaPattern]:
        runs: List[FormulaPattern] = []
        for row in range(grid.row_count):
            col = 0
            while col < grid.col_count:
                base = grid.formula_at(row, col)
                if base is None:
                    col += 1
                    continue
                base_key = self.normalize_formula(base)
                base_refs = self._reference_endpoints(base)
                end = col
                while base_refs and end + 1 < grid.col_count:
                    candidate = grid.formula_at(row, end + 1)
                    if candidate is None or self.normalize_formula(candidate) != base_key:
                        break
                    if not self._offsets_consistent(
                        base_refs, self._reference_endpoints(candidate), 0, end + 1 - col
                    ):
                        break
                    end += 1

                length = end - col + 1
                if length >= self.MIN_RUN_LENGTH:
                    cells = [grid.cell_address(row, c) for c in range(col, end + 1)]
                    runs.append(FormulaPattern(
                        type=FormulaPatternType.SEQUENTIAL,
                        pattern=base_key,
                        count=length,
                        cells=cells,
                        example=base,
                        description=f"Row-wise sequential formulas across {cells[0]}:{cells[-1]}",
                    ))
                col = end + 1
        return runs

    def _reference_endpoints(self, formula: str) -> List[Tuple[Optional[str], List[Endpoint]]]:
        refs: List[Tuple[Optional[str], List[Endpoint]]] = []

        def visit(node):
            if isinstance(node, ReferenceNode):
                endpoints = [self._parse_endpoint(part) for part in node.reference.split(":")]
                refs.append((node.sheet, endpoints))
            for child in children(node):
                visit(child)

        visit(self.parser.parse(formula))
        return refs

    def _parse_endpoint(self, text: str) -> Endpoint:
        match = self.ENDPOINT_PATTERN.match(text)
        if not match:
            return False, None, False, None
        col_abs, letters, row_abs, digits = match.groups()
        if not letters:
            # whole-row endpoint such as $3
            return False, None, bool(col_abs), int(digits) if digits else None
        return (
            bool(col_abs),
            col_index(letters),
            bool(row_abs),
            int(digits) if digits else None,
        )

    def _offsets_consistent(
        self,
        base: List[Tuple[Optional[str], List[Endpoint]]],
        other: List[Tuple[Optional[str], List[Endpoint]]],
        d_row: int,
        d_col: int,
    ) -> bool:
        """Relative components shift by the offset; absolute ones stay fixed"""
        if len(base) != len(other):
            return False
        for (base_sheet, base_points), (sheet, points) in zip(base, other):
            if base_sheet != sheet or len(base_points) != len(points):
                return False
            for (bca, bc, bra, br), (ca, c, ra, r) in zip(base_points, points):
                if bca != ca or bra != ra:
                    return False
                if bc is not None and c is not None:
                    expected = bc if bca else bc + d_col
                    if c != expected:
                        return False
                elif bc != c:
                    return False
                if br is not None and r is not None:
                    expected = br if bra else br + d_row
                    if r != expected:
                        return False
                elif br != r:
                    return False
        return True

    def _describe_group(self, pattern_type: FormulaPatternType, cells: List[str]) -> str:
        span = f"{cells[0]}..{cells[-1]}" if len(cells) > 1 else cells[0]
        return {
            FormulaPatternType.AGGREGATION: f"Aggregation formula repeated in {len(cells)} cells ({span})",
            FormulaPatternType.LOOKUP: f"Lookup formula repeated in {len(cells)} cells ({span})",
            FormulaPatternType.CONDITIONAL: f"Conditional formula repeated in {len(cells)} cells ({span})",
            FormulaPatternType.SEQUENTIAL: f"Filled formula sequence over {len(cells)} cells ({span})",
        }.get(pattern_type, f"Same formula structure in {len(cells)} cells ({span})")

    # ─────────────────────────────────────────────────────────────
    # Data patterns
    # ─────────────────────────────────────────────────────────────

    def analyze_data_patterns(self, grid: Grid) -> List[DataPattern]:
        patterns: List[DataPattern] = []
        for col in range(grid.col_count):
            cells = [(row, col) for row in range(grid.row_count)]
            pattern = self._sequence_pattern(grid, cells, Axis.COLUMN, col)
            if pattern:
                patterns.append(pattern)
        for row in range(grid.row_count):
            cells = [(row, col) for col in range(grid.col_count)]
            pattern = self._sequence_pattern(grid, cells, Axis.ROW, row)
            if pattern:
                patterns.append(pattern)
        return patterns

    def _sequence_pattern(
        self, grid: Grid, cells: List[Tuple[int, int]], axis: Axis, index: int
    ) -> Optional[DataPattern]:
        numeric = [
            (r, c, grid.value_at(r, c))
            for r, c in cells
            if isinstance(grid.value_at(r, c), (int, float)) and not isinstance(grid.value_at(r, c), bool)
        ]
        if len(numeric) < self.MIN_SEQUENCE_LENGTH:
            return None

        values = [float(v) for _, _, v in numeric]
        addresses = [grid.cell_address(r, c) for r, c, _ in numeric]
        if axis == Axis.COLUMN:
            where = f"column {col_letter(grid.origin[1] + index)}"
        else:
            where = f"row {grid.origin[0] + index + 1}"

        diffs = [b - a for a, b in zip(values, values[1:])]
        if self._variance(diffs) < self.TOLERANCE:
            step = sum(diffs) / len(diffs)
            return DataPattern(
                type=DataPatternType.SERIES,
                axis=axis,
                index=index,
                cells=addresses,
                increment=step,
                description=f"Arithmetic series in {where} (step {format_number(round(step, 6))})",
            )

        if all(v != 0 for v in values[:-1]):
            ratios = [b / a for a, b in zip(values, values[1:])]
            mean_ratio = sum(ratios) / len(ratios)
            if self._variance(ratios) < self.TOLERANCE and abs(mean_ratio - 1) > self.TOLERANCE:
                return DataPattern(
                    type=DataPatternType.GROWTH,
                    axis=axis,
                    index=index,
                    cells=addresses,
                    ratio=mean_ratio,
                    description=f"Growth series in {where} (ratio {format_number(round(mean_ratio, 4))})",
                )

        period = self._find_period(values)
        if period:
            return DataPattern(
                type=DataPatternType.PERIODIC,
                axis=axis,
                index=index,
                cells=addresses,
                period=period,
                description=f"Repeating cycle of {period} values in {where}",
            )
        return None

    def _find_period(self, values: Sequence[float]) -> Optional[int]:
        for period in range(2, len(values) // 2 + 1):
            if all(abs(values[i] - values[i % period]) <= self.TOLERANCE for i in range(len(values))):
                return period
        return None

    def _variance(self, numbers: Sequence[float]) -> float:
        mean = sum(numbers) / len(numbers)
        return sum((n - mean) ** 2 for n in numbers) / len(numbers)
