"""Stage 1: Region Detection - segment a grid into semantic regions."""

from __future__ import annotations

from collections import deque
from datetime import date, datetime
import logging
import re
import time
from typing import List, Optional, Set, Tuple

from core.enums import RegionType
from core.interfaces import Stage
from core.models import Grid, RegionCharacteristics, SemanticRegion

logger = logging.getLogger(__name__)


class RegionDetector(Stage[Grid, List[SemanticRegion]]):
    """Four independent detection passes followed by a containment merge."""

    HEADER_SCAN_ROWS = 10
    HEADER_TEXT_RATIO = 0.7
    HEADER_CONFIDENCE = 0.8
    TOTAL_CONFIDENCE = 0.9
    BLOCK_CONFIDENCE = 0.7
    DATA_CONFIDENCE = 0.7

    HEADER_PATTERNS = [
        re.compile(r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)", re.IGNORECASE),
        re.compile(r"^(q1|q2|q3|q4|quarter|month|year|date|total|sum|average|avg|period)", re.IGNORECASE),
        re.compile(r"^(revenue|sales|cost|expense|profit|margin|growth|forecast|amount|price|quantity)", re.IGNORECASE),
        re.compile(r"^(name|description|category|type|status|id|code)", re.IGNORECASE),
    ]
    TOTAL_PATTERN = re.compile(r"\b(grand\s+total|subtotal|sub-total|total|sum)\b", re.IGNORECASE)
    SUM_FORMULA_PATTERN = re.compile(r"\bSUM\s*\(", re.IGNORECASE)
    DATE_PATTERN = re.compile(r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d{4}-\d{2}-\d{2}")
    CURRENCY_PATTERN = re.compile(r"[$€£¥]")

    @property
    def name(self) -> str:
        return "Region Detection"

    @property
    def stage_number(self) -> int:
        return 1

    def validate_input(self, input_data: Grid) -> bool:
        return isinstance(input_data, Grid)

    def execute(self, input_data: Grid) -> List[SemanticRegion]:
        return self.detect_regions(input_data)

    def detect_regions(self, grid: Grid) -> List[SemanticRegion]:
        started = time.perf_counter()
        if grid.row_count == 0 or grid.col_count == 0:
            return []

        candidates: List[SemanticRegion] = []
        candidates.extend(self._detect_headers(grid))
        candidates.extend(self._detect_totals(grid))
        candidates.extend(self._detect_input_calculation_blocks(grid))
        candidates.extend(self._detect_data_tables(grid))

        regions = self._merge(candidates)
        logger.debug(
            "Detected %d regions (%d candidates) in %s, %.1f ms",
            len(regions),
            len(candidates),
            grid.address,
            (time.perf_counter() - started) * 1000,
        )
        return regions

    # ─────────────────────────────────────────────────────────────
    # Passes
    # ─────────────────────────────────────────────────────────────

    def _detect_headers(self, grid: Grid) -> List[SemanticRegion]:
        regions = []
        for row in range(min(self.HEADER_SCAN_ROWS, grid.row_count)):
            if not self._is_likely_header(grid, row):
                continue
            extent = self._row_extent(grid, row)
            if extent is None:
                continue
            regions.append(self._region(
                grid, RegionType.HEADER, row, extent[0], row, extent[1],
                self.HEADER_CONFIDENCE, f"Header row {grid.origin[0] + row + 1}",
            ))
        return regions

    def _is_likely_header(self, grid: Grid, row: int) -> bool:
        values = [grid.value_at(row, col) for col in range(grid.col_count)]
        non_empty = [value for value in values if value is not None and value != ""]
        if not non_empty:
            return False

        text_count = sum(1 for value in non_empty if isinstance(value, str) and value.strip())
        text_ratio = text_count / len(non_empty)
        has_pattern = any(
            isinstance(value, str) and any(p.match(value.strip()) for p in self.HEADER_PATTERNS)
            for value in non_empty
        )

        numeric_below = False
        if row + 1 < grid.row_count:
            below = [
                grid.value_at(row + 1, col)
                for col in range(grid.col_count)
                if grid.has_value(row + 1, col)
            ]
            if below:
                numeric = sum(1 for value in below if self._is_number(value))
                numeric_below = numeric / len(below) > 0.5

        return (text_ratio >= self.HEADER_TEXT_RATIO or has_pattern) and (numeric_below or row == 0)

    def _detect_totals(self, grid: Grid) -> List[SemanticRegion]:
        regions = []
        for row in range(grid.row_count):
            has_label = any(
                isinstance(grid.value_at(row, col), str)
                and self.TOTAL_PATTERN.search(grid.value_at(row, col))
                for col in range(grid.col_count)
            )
            has_sum = any(
                self.SUM_FORMULA_PATTERN.search(grid.formula_at(row, col) or "")
                for col in range(grid.col_count)
            )
            if not (has_label or has_sum):
                continue
            extent = self._row_extent(grid, row)
            if extent is None:
                continue
            regions.append(self._region(
                grid, RegionType.TOTAL, row, extent[0], row, extent[1],
                self.TOTAL_CONFIDENCE, f"Total row {grid.origin[0] + row + 1}",
            ))
        return regions

    def _detect_input_calculation_blocks(self, grid: Grid) -> List[SemanticRegion]:
        regions = []
        visited: Set[Tuple[int, int]] = set()

        for row in range(grid.row_count):
            for col in range(grid.col_count):
                if (row, col) in visited or not grid.is_populated(row, col):
                    continue
                has_formula = grid.formula_at(row, col) is not None
                component = self._flood_fill(grid, row, col, has_formula, visited)
                if len(component) < 2:
                    continue
                rows = [cell[0] for cell in component]
                cols = [cell[1] for cell in component]
                region_type = RegionType.CALCULATION if has_formula else RegionType.INPUT
                label = "Calculation" if has_formula else "Input"
                regions.append(self._region(
                    grid, region_type, min(rows), min(cols), max(rows), max(cols),
                    self.BLOCK_CONFIDENCE, f"{label} block of {len(component)} cells",
                ))
        return regions

    def _flood_fill(
        self,
        grid: Grid,
        row: int,
        col: int,
        has_formula: bool,
        visited: Set[Tuple[int, int]],
    ) -> List[Tuple[int, int]]:
        component = []
        queue = deque([(row, col)])
        visited.add((row, col))
        while queue:
            r, c = queue.popleft()
            component.append((r, c))
            for dr, dc in ((1, 0), (-1, 0), (0, 1), (0, -1)):
                nr, nc = r + dr, c + dc
                if not (0 <= nr < grid.row_count and 0 <= nc < grid.col_count):
                    continue
                if (nr, nc) in visited or not grid.is_populated(nr, nc):
                    continue
                if (grid.formula_at(nr, nc) is not None) != has_formula:
                    continue
                visited.add((nr, nc))
                queue.append((nr, nc))
        return component

    def _detect_data_tables(self, grid: Grid) -> List[SemanticRegion]:
        regions = []
        visited: Set[Tuple[int, int]] = set()

        for row in range(grid.row_count):
            for col in range(grid.col_count):
                if (row, col) in visited or not grid.is_populated(row, col):
                    continue
                if not self._is_table_start(grid, row, col):
                    continue

                end_col = col
                while end_col + 1 < grid.col_count and grid.is_populated(row, end_col + 1):
                    end_col += 1
                end_row = row
                while end_row + 1 < grid.row_count and any(
                    grid.is_populated(end_row + 1, c) for c in range(col, end_col + 1)
                ):
                    end_row += 1

                if not self._is_data_block(grid, row, col, end_row, end_col):
                    continue
                for r in range(row, end_row + 1):
                    for c in range(col, end_col + 1):
                        visited.add((r, c))
                regions.append(self._region(
                    grid, RegionType.DATA, row, col, end_row, end_col,
                    self.DATA_CONFIDENCE,
                    f"Data table with {end_row - row + 1} rows and {end_col - col + 1} columns",
                ))
        return regions

    def _is_table_start(self, grid: Grid, row: int, col: int) -> bool:
        right = col + 1 < grid.col_count and grid.is_populated(row, col + 1)
        down = row + 1 < grid.row_count and grid.is_populated(row + 1, col)
        return right or down

    def _is_data_block(self, grid: Grid, start_row: int, start_col: int, end_row: int, end_col: int) -> bool:
        populated = 0
        data_like = 0
        for r in range(start_row, end_row + 1):
            for c in range(start_col, end_col + 1):
                if not grid.is_populated(r, c):
                    continue
                populated += 1
                value = grid.value_at(r, c)
                if self._is_number(value) or self._is_date(value):
                    data_like += 1
        return populated > 0 and data_like / populated > 0.5

    # ─────────────────────────────────────────────────────────────
    # Merge
    # ─────────────────────────────────────────────────────────────

    def _merge(self, candidates: List[SemanticRegion]) -> List[SemanticRegion]:
        ordered = sorted(candidates, key=lambda region: (-region.area, -region.confidence))
        accepted: List[SemanticRegion] = []
        for candidate in ordered:
            keep = True
            for region in accepted:
                if region.contains(candidate):
                    if region.type == candidate.type:
                        keep = False
                        break
                elif region.overlaps(candidate):
                    keep = False
                    break
            if keep:
                accepted.append(candidate)
        return accepted

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    def _region(
        self,
        grid: Grid,
        region_type: RegionType,
        start_row: int,
        start_col: int,
        end_row: int,
        end_col: int,
        confidence: float,
        description: str,
    ) -> SemanticRegion:
        return SemanticRegion(
            type=region_type,
            start_row=start_row,
            start_col=start_col,
            end_row=end_row,
            end_col=end_col,
            address=grid.range_address(start_row, start_col, end_row, end_col),
            confidence=confidence,
            characteristics=self._characteristics(grid, start_row, start_col, end_row, end_col),
            description=description,
        )

    def _characteristics(
        self, grid: Grid, start_row: int, start_col: int, end_row: int, end_col: int
    ) -> RegionCharacteristics:
        total = numeric = text = dates = currency = percent = 0
        has_formulas = False
        for r in range(start_row, end_row + 1):
            for c in range(start_col, end_col + 1):
                total += 1
                if grid.formula_at(r, c) is not None:
                    has_formulas = True
                value = grid.value_at(r, c)
                if self._is_number(value):
                    numeric += 1
                    if 0 < value < 1:
                        percent += 1
                elif isinstance(value, str) and value.strip():
                    text += 1
                    if self.CURRENCY_PATTERN.search(value):
                        currency += 1
                    if value.strip().endswith("%"):
                        percent += 1
                    if self.DATE_PATTERN.search(value):
                        dates += 1

        return RegionCharacteristics(
            has_formulas=has_formulas,
            is_numeric=numeric > total * 0.5,
            is_text=text > total * 0.3,
            is_date=dates > total * 0.3,
            is_currency=currency > total * 0.2,
            is_percentage=percent > total * 0.2,
        )

    def _row_extent(self, grid: Grid, row: int) -> Optional[Tuple[int, int]]:
        cols = [col for col in range(grid.col_count) if grid.is_populated(row, col)]
        if not cols:
            return None
        return cols[0], cols[-1]

    def _is_number(self, value) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)

    def _is_date(self, value) -> bool:
        if isinstance(value, (date, datetime)):
            return True
        return isinstance(value, str) and bool(self.DATE_PATTERN.search(value))
