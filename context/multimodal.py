"""Outermost entry point: several representations of one grid for one query."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from config import settings
from core.enums import RepresentationMode
from core.models import CellValue, Grid, MultiModalRepresentation, TokenOptimizationOptions
from encoders import data_statistics, estimate_tokens
from stages.s4_semantic_context import SemanticGridBuilder

from .history import ChangeHistoryStore

logger = logging.getLogger(__name__)

MODE_KEYWORDS: List[Tuple[RepresentationMode, re.Pattern]] = [
    (RepresentationMode.SPATIAL, re.compile(r"\b(visual|layout|look)", re.IGNORECASE)),
    (RepresentationMode.STRUCTURED, re.compile(r"\b(structure|organi[sz]e|json)", re.IGNORECASE)),
    (RepresentationMode.SEMANTIC, re.compile(r"\b(explain|understand|describe|why)", re.IGNORECASE)),
    (RepresentationMode.DIFFERENTIAL, re.compile(r"\b(change|diff|modified|history)", re.IGNORECASE)),
    (RepresentationMode.DETAILED, re.compile(r"\b(formula|calculation)", re.IGNORECASE)),
]


class MultiModalSpreadsheetContext:
    """Combine the semantic context with query-selected representation modes.

    The change history is owned by the caller and shared across calls; when
    none is given a private store is created.
    """

    def __init__(
        self,
        history: Optional[ChangeHistoryStore] = None,
        builder: Optional[SemanticGridBuilder] = None,
    ):
        self.history = history if history is not None else ChangeHistoryStore()
        self.builder = builder or SemanticGridBuilder()

    def select_representation_modes(self, query: Optional[str]) -> List[RepresentationMode]:
        text = query or ""
        modes = [mode for mode, pattern in MODE_KEYWORDS if pattern.search(text)]
        modes.append(RepresentationMode.COMPACT)
        return modes

    def build_comprehensive_context(
        self,
        grid: Grid,
        query: Optional[str] = None,
        options: Optional[TokenOptimizationOptions] = None,
    ) -> MultiModalRepresentation:
        context = self.builder.build_context(grid, query, options, history=self.history)
        classification = context.query

        modes: List[RepresentationMode] = []
        for mode in classification.required_modes + self.select_representation_modes(query):
            if mode not in modes:
                modes.append(mode)

        per_mode = max(classification.token_budget // len(modes), settings.MIN_MODE_TOKENS)
        built: Dict[RepresentationMode, str] = {}
        for mode in modes:
            if per_mode == context.mode_budget and mode in context.representations:
                built[mode] = context.representations[mode]
            else:
                built[mode] = self.builder.representations.build(mode, grid, context, per_mode, self.history)

        coverage = len(context.structural.cells) / grid.cell_count if grid.cell_count else 0.0
        fidelity = context.confidence
        if RepresentationMode.DETAILED in built:
            fidelity += 0.2
        if RepresentationMode.STRUCTURED in built:
            fidelity += 0.1

        representation = MultiModalRepresentation(
            primary_mode=modes[0],
            modes=built,
            total_tokens=sum(estimate_tokens(content) for content in built.values()),
            coverage_score=min(coverage, 1.0),
            fidelity_score=min(fidelity, 1.0),
            query_classification=classification,
            statistics=data_statistics(grid),
        )
        logger.debug(
            "Multimodal context for %s: modes=%s, %d tokens",
            grid.address,
            ",".join(mode.value for mode in modes),
            representation.total_tokens,
        )
        return representation

    def track_changes(self, grid: Grid, source: str = "snapshot") -> int:
        return self.history.record_grid(grid, source)

    def record_change(
        self,
        address: str,
        value: CellValue = None,
        formula: Optional[str] = None,
        source: str = "manual",
    ) -> None:
        self.history.record(address, value, formula, source)
