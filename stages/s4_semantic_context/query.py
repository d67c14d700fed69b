"""Query intent, scope and complexity classification"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from core.enums import (
    CompressionLevel,
    DataScope,
    QueryComplexity,
    QueryIntent,
    RepresentationMode,
)
from core.models import QueryClassification

logger = logging.getLogger(__name__)

INTENT_PATTERNS: List[Tuple[QueryIntent, re.Pattern]] = [
    (QueryIntent.CREATE, re.compile(r"\b(create|add|insert|new|build)\b", re.IGNORECASE)),
    (QueryIntent.MODIFY, re.compile(r"\b(modify|change|update|edit|fix)\b", re.IGNORECASE)),
    (QueryIntent.VALIDATE, re.compile(r"\b(check|validate|verify|audit|errors?)\b", re.IGNORECASE)),
    (QueryIntent.EXPLAIN, re.compile(r"\b(explain|what|why|how|describe)\b", re.IGNORECASE)),
]

SCOPE_PATTERNS: List[Tuple[DataScope, re.Pattern]] = [
    (DataScope.CELL, re.compile(r"\b(cell|specific)\b", re.IGNORECASE)),
    (DataScope.REGION, re.compile(r"\b(region|area|section|range)\b", re.IGNORECASE)),
    (DataScope.WORKBOOK, re.compile(r"\b(workbook|file)\b", re.IGNORECASE)),
]

COMPLEX_QUERY_PATTERN = re.compile(r"\b(complex|detailed|comprehensive)\b", re.IGNORECASE)
FULL_CONTEXT_PATTERN = re.compile(r"\b(all|complete|full|entire)\b", re.IGNORECASE)
FORMULA_FOCUS_PATTERN = re.compile(r"\b(formulas?|calculations?|compute)\b", re.IGNORECASE)

# intent -> (modes, token budget, compression)
INTENT_TABLE: Dict[QueryIntent, Tuple[List[RepresentationMode], int, CompressionLevel]] = {
    QueryIntent.CREATE: (
        [RepresentationMode.STRUCTURED, RepresentationMode.SEMANTIC], 1500, CompressionLevel.AGGRESSIVE,
    ),
    QueryIntent.MODIFY: (
        [RepresentationMode.DIFFERENTIAL, RepresentationMode.DETAILED], 2500, CompressionLevel.MODERATE,
    ),
    QueryIntent.VALIDATE: (
        [RepresentationMode.DETAILED, RepresentationMode.STRUCTURED], 3000, CompressionLevel.MINIMAL,
    ),
    QueryIntent.EXPLAIN: (
        [RepresentationMode.SEMANTIC, RepresentationMode.SPATIAL], 2000, CompressionLevel.MODERATE,
    ),
    QueryIntent.ANALYZE: (
        [RepresentationMode.COMPACT, RepresentationMode.SEMANTIC], 2000, CompressionLevel.MODERATE,
    ),
}

FULL_CONTEXT_BUDGET = 4000


class QueryClassifier:
    """Map a free-text query onto representation modes and a token budget"""

    COMPLEX_CELL_COUNT = 1000
    MODERATE_CELL_COUNT = 100

    def classify(
        self,
        query: Optional[str],
        cell_count: int = 0,
        max_tokens: Optional[int] = None,
    ) -> QueryClassification:
        text = query or ""
        intent = self._intent(text)
        modes, budget, compression = INTENT_TABLE[intent]

        if FULL_CONTEXT_PATTERN.search(text):
            compression = CompressionLevel.MINIMAL
            budget = max(budget, FULL_CONTEXT_BUDGET)
        if max_tokens is not None:
            budget = max_tokens

        classification = QueryClassification(
            query=text,
            intent=intent,
            scope=self._scope(text),
            complexity=self._complexity(text, cell_count),
            required_modes=list(modes),
            token_budget=budget,
            compression_level=compression,
            prioritize_formulas=bool(FORMULA_FOCUS_PATTERN.search(text)),
        )
        logger.debug(
            "Query classified as %s/%s/%s, budget %d",
            classification.intent.value,
            classification.scope.value,
            classification.complexity.value,
            classification.token_budget,
        )
        return classification

    def _intent(self, text: str) -> QueryIntent:
        for intent, pattern in INTENT_PATTERNS:
            if pattern.search(text):
                return intent
        return QueryIntent.ANALYZE

    def _scope(self, text: str) -> DataScope:
        for scope, pattern in SCOPE_PATTERNS:
            if pattern.search(text):
                return scope
        return DataScope.SHEET

    def _complexity(self, text: str, cell_count: int) -> QueryComplexity:
        if cell_count > self.COMPLEX_CELL_COUNT or COMPLEX_QUERY_PATTERN.search(text):
            return QueryComplexity.COMPLEX
        if cell_count > self.MODERATE_CELL_COUNT:
            return QueryComplexity.MODERATE
        return QueryComplexity.SIMPLE
