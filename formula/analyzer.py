"""Per-formula complexity scoring and whole-grid formula checks."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Set

from core.enums import (
    ComplexityLevel,
    FormulaCategory,
    ValidationErrorType,
    ValidationWarningType,
)
from core.models import (
    ConstantNode,
    DependencyGraph,
    ErrorNode,
    FormulaComplexity,
    FormulaError,
    FormulaTypeInfo,
    FormulaValidationResult,
    FormulaWarning,
    FunctionNode,
    Grid,
    ParsedFormula,
    ReferenceNode,
)
from .parser import FormulaParser, children
from .type_detector import FUNCTION_CATEGORIES, VOLATILE_FUNCTIONS, FormulaTypeDetector

logger = logging.getLogger(__name__)

CONDITIONAL_FUNCTIONS = {
    "IF", "IFS", "IFERROR", "IFNA", "SWITCH",
    "SUMIF", "SUMIFS", "COUNTIF", "COUNTIFS", "AVERAGEIF", "AVERAGEIFS",
}
LOOKUP_FUNCTIONS = FUNCTION_CATEGORIES[FormulaCategory.LOOKUP]


class FormulaAnalyzer:
    """Complexity scores, dependency graphs and validation for formulas"""

    EXTERNAL_REFERENCE_PATTERN = re.compile(r"\[[^\]]+\][^!]*!")

    def __init__(
        self,
        parser: Optional[FormulaParser] = None,
        detector: Optional[FormulaTypeDetector] = None,
        graph_builder=None,
    ):
        self.parser = parser or FormulaParser()
        self.detector = detector or FormulaTypeDetector(self.parser)
        if graph_builder is None:
            from stages.s3_dependency_graph import DependencyGraphBuilder

            graph_builder = DependencyGraphBuilder(self.parser)
        self.graph_builder = graph_builder

    def analyze_complexity(self, formula: str) -> FormulaComplexity:
        tree = self.parser.parse(formula)

        depth = self._depth(tree)
        function_names = self._function_names(tree)
        function_count = len(function_names)
        unique_functions = len(set(function_names))
        reference_count = self._count(tree, lambda node: isinstance(node, ReferenceNode))
        conditional_count = sum(1 for name in function_names if name in CONDITIONAL_FUNCTIONS)
        lookup_count = sum(1 for name in function_names if name in LOOKUP_FUNCTIONS)
        nested_functions = self._nested_functions(tree)

        score = (
            depth * 10
            + function_count * 5
            + unique_functions * 3
            + reference_count * 2
            + conditional_count * 8
            + lookup_count * 7
            + nested_functions * 15
        )

        if score < 20:
            level = ComplexityLevel.SIMPLE
        elif score < 50:
            level = ComplexityLevel.MODERATE
        elif score < 100:
            level = ComplexityLevel.COMPLEX
        else:
            level = ComplexityLevel.VERY_COMPLEX

        recommendations: List[str] = []
        if depth > 5:
            recommendations.append("Break the formula into intermediate cells to reduce nesting depth")
        if conditional_count > 3:
            recommendations.append("Replace chained conditionals with IFS or SWITCH")
        if lookup_count > 2:
            recommendations.append("Move repeated lookups into helper columns")
        if function_count > 10:
            recommendations.append("Use named ranges to make the formula easier to read")
        if level == ComplexityLevel.VERY_COMPLEX:
            recommendations.append("Document the intent of this formula next to the cell")

        return FormulaComplexity(
            formula=formula,
            score=score,
            level=level,
            depth=depth,
            function_count=function_count,
            unique_functions=unique_functions,
            reference_count=reference_count,
            conditional_count=conditional_count,
            lookup_count=lookup_count,
            nested_functions=nested_functions,
            recommendations=recommendations,
        )

    def build_dependency_graph(self, grid: Grid) -> DependencyGraph:
        return self.graph_builder.execute(grid)

    def detect_formula_types(self, grid: Grid) -> Dict[str, FormulaTypeInfo]:
        return {
            grid.cell_address(row, col): self.detector.detect(formula)
            for row, col, formula in grid.iter_formulas()
        }

    def validate_formulas(
        self, grid: Grid, graph: Optional[DependencyGraph] = None
    ) -> FormulaValidationResult:
        graph = graph or self.build_dependency_graph(grid)
        in_cycle: Set[str] = {address for cycle in graph.circular_references for address in cycle}

        errors: List[FormulaError] = []
        warnings: List[FormulaWarning] = []

        for row, col, formula in grid.iter_formulas():
            address = grid.cell_address(row, col)
            tree = self.parser.parse(formula)

            for message in self._error_messages(tree):
                errors.append(FormulaError(
                    address=address,
                    formula=formula,
                    type=ValidationErrorType.SYNTAX,
                    message=message,
                ))
            if "#REF!" in formula.upper():
                errors.append(FormulaError(
                    address=address,
                    formula=formula,
                    type=ValidationErrorType.REFERENCE,
                    message="Formula contains a broken #REF! reference",
                ))
            if address in in_cycle:
                errors.append(FormulaError(
                    address=address,
                    formula=formula,
                    type=ValidationErrorType.CIRCULAR,
                    message="Formula is part of a circular reference",
                ))

            complexity = self.analyze_complexity(formula)
            if complexity.level == ComplexityLevel.VERY_COMPLEX:
                warnings.append(FormulaWarning(
                    address=address,
                    formula=formula,
                    type=ValidationWarningType.PERFORMANCE,
                    message=f"Formula is very complex (score {complexity.score})",
                ))

            volatile = sorted(set(self._function_names(tree)) & VOLATILE_FUNCTIONS)
            if volatile:
                warnings.append(FormulaWarning(
                    address=address,
                    formula=formula,
                    type=ValidationWarningType.VOLATILE,
                    message=f"Volatile functions recalculate on every change: {', '.join(volatile)}",
                ))

            if self.EXTERNAL_REFERENCE_PATTERN.search(formula):
                warnings.append(FormulaWarning(
                    address=address,
                    formula=formula,
                    type=ValidationWarningType.COMPATIBILITY,
                    message="Formula references an external workbook",
                ))

            if self._has_array_literal(tree):
                warnings.append(FormulaWarning(
                    address=address,
                    formula=formula,
                    type=ValidationWarningType.COMPATIBILITY,
                    message="Array constants may not be supported by every spreadsheet application",
                ))

        logger.debug(
            "Validated %s: %d errors, %d warnings", grid.address, len(errors), len(warnings)
        )
        return FormulaValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    # ─────────────────────────────────────────────────────────────
    # Independent tree walks
    # ─────────────────────────────────────────────────────────────

    def _depth(self, node: ParsedFormula) -> int:
        kids = children(node)
        if not kids:
            return 1
        return 1 + max(self._depth(child) for child in kids)

    def _function_names(self, tree: ParsedFormula) -> List[str]:
        names: List[str] = []

        def visit(node: ParsedFormula):
            if isinstance(node, FunctionNode):
                names.append(node.name)
            for child in children(node):
                visit(child)

        visit(tree)
        return names

    def _count(self, tree: ParsedFormula, predicate) -> int:
        total = 1 if predicate(tree) else 0
        for child in children(tree):
            total += self._count(child, predicate)
        return total

    def _nested_functions(self, tree: ParsedFormula) -> int:
        """Deepest function-inside-function nesting anywhere in the tree"""

        def visit(node: ParsedFormula, enclosing: int) -> int:
            if isinstance(node, FunctionNode):
                deepest = enclosing
                for arg in node.args:
                    deepest = max(deepest, visit(arg, enclosing + 1))
                return deepest
            deepest = 0
            for child in children(node):
                deepest = max(deepest, visit(child, enclosing))
            return deepest

        return visit(tree, 0)

    def _error_messages(self, tree: ParsedFormula) -> List[str]:
        messages: List[str] = []

        def visit(node: ParsedFormula):
            if isinstance(node, ErrorNode):
                messages.append(node.message)
            for child in children(node):
                visit(child)

        visit(tree)
        return messages

    def _has_array_literal(self, tree: ParsedFormula) -> bool:
        if isinstance(tree, ConstantNode) and isinstance(tree.value, str) and tree.value.startswith("{"):
            return True
        return any(self._has_array_literal(child) for child in children(tree))
