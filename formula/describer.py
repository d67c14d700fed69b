"""Natural-language narration of formulas."""

from __future__ import annotations

from typing import List, Optional

from core.enums import ComplexityBucket, FormulaCategory
from core.models import (
    ConstantNode,
    ErrorNode,
    FormulaDescription,
    FormulaTypeInfo,
    FunctionNode,
    OperatorNode,
    ParsedFormula,
    ReferenceNode,
)
from .parser import FormulaParser, children, format_number
from .type_detector import VOLATILE_FUNCTIONS, FormulaTypeDetector

OUTPUT_DESCRIPTIONS = {
    FormulaCategory.FINANCIAL: "Returns a financial metric or monetary value",
    FormulaCategory.STATISTICAL: "Returns a statistical measure",
    FormulaCategory.LOOKUP: "Returns the looked-up value or an error if not found",
    FormulaCategory.LOGICAL: "Returns TRUE/FALSE or conditional values",
    FormulaCategory.MATHEMATICAL: "Returns a numerical result",
    FormulaCategory.TEXT: "Returns formatted or manipulated text",
    FormulaCategory.DATE_TIME: "Returns a date, time, or duration",
    FormulaCategory.ARRAY: "Returns an array of values",
    FormulaCategory.INFORMATION: "Returns information about the data",
}


class FormulaDescriber:
    """Explain formulas in plain English"""

    def __init__(
        self,
        parser: Optional[FormulaParser] = None,
        detector: Optional[FormulaTypeDetector] = None,
    ):
        self.parser = parser or FormulaParser()
        self.detector = detector or FormulaTypeDetector(self.parser)

    def describe(self, formula: str, cell_address: Optional[str] = None) -> FormulaDescription:
        tree = self.parser.parse(formula)
        info = self.detector.detect(tree)

        return FormulaDescription(
            formula=formula,
            cell_address=cell_address,
            summary=self._summary(tree, info),
            purpose=self._purpose(info, cell_address),
            inputs=self._inputs(tree),
            output=self._output(tree, info),
            steps=self._steps(tree),
            type_info=info,
            warnings=self._warnings(tree, info),
            suggestions=self._suggestions(tree, info),
        )

    def quick_describe(self, formula: str) -> str:
        """One-line description used by semantic views"""
        tree = self.parser.parse(formula)
        if isinstance(tree, ErrorNode):
            return "Invalid formula"
        if isinstance(tree, ConstantNode):
            return f"Constant: {self._constant_text(tree)}"
        if isinstance(tree, ReferenceNode):
            return f"References {self._reference_text(tree)}"
        if isinstance(tree, FunctionNode) and tree.args:
            args = ", ".join(self.render(arg) for arg in tree.args[:3])
            return f"{tree.name} of {args}"
        info = self.detector.detect(tree)
        if info.functions:
            return f"{info.functions[0]} {info.type.value} formula"
        return f"Calculates {self.render(tree)}"

    def render(self, node: ParsedFormula) -> str:
        return self.parser.describe(node)

    def _summary(self, tree: ParsedFormula, info: FormulaTypeInfo) -> str:
        if isinstance(tree, ErrorNode):
            return f"Invalid formula: {tree.message}"
        if isinstance(tree, ConstantNode):
            return f"This is a constant value: {self._constant_text(tree)}"
        if isinstance(tree, ReferenceNode):
            return f"This formula references {self._reference_text(tree)}"

        complexity = {
            ComplexityBucket.SIMPLE: "simple",
            ComplexityBucket.MODERATE: "moderately complex",
        }.get(info.complexity, "complex")
        if not info.functions:
            return f"This is a {complexity} arithmetic expression: {self.render(tree)}"
        kind = self.detector.describe_type(info.type).lower()
        return f"This is a {complexity} formula for {kind} that uses {info.functions[0]} as its primary function"

    def _purpose(self, info: FormulaTypeInfo, cell_address: Optional[str]) -> str:
        functions = info.functions
        first = functions[0] if functions else ""
        purpose = "Perform calculations"

        if info.type == FormulaCategory.FINANCIAL:
            purpose = {
                "NPV": "Calculate the net present value of cash flows",
                "IRR": "Calculate the internal rate of return",
                "PMT": "Calculate loan payment amount",
                "FV": "Calculate future value of an investment",
                "PV": "Calculate present value of future cash flows",
            }.get(first, "Perform financial calculations")
        elif info.type == FormulaCategory.STATISTICAL:
            if first in ("AVERAGE", "AVERAGEIF", "AVERAGEIFS"):
                purpose = "Calculate the average of values"
            elif first in ("STDEV", "STDEVP"):
                purpose = "Calculate standard deviation"
            elif first == "CORREL":
                purpose = "Calculate correlation between datasets"
            elif first == "FORECAST":
                purpose = "Forecast future values based on trends"
            elif first.startswith("COUNT"):
                purpose = "Count matching values"
            else:
                purpose = "Perform statistical analysis"
        elif info.type == FormulaCategory.LOOKUP:
            if "INDEX" in functions and "MATCH" in functions:
                purpose = "Find and return a value using INDEX/MATCH"
            elif "VLOOKUP" in functions:
                purpose = "Look up a value in a vertical table"
            elif "XLOOKUP" in functions:
                purpose = "Look up a value with advanced matching options"
            else:
                purpose = "Search and retrieve data from a range"
        elif info.type == FormulaCategory.LOGICAL:
            if "IF" in functions:
                purpose = "Evaluate conditions and return different values"
            elif "AND" in functions or "OR" in functions:
                purpose = "Test multiple conditions"
            else:
                purpose = "Perform logical tests and conditional operations"
        elif info.type == FormulaCategory.MATHEMATICAL:
            if first in ("SUM", "SUMIF", "SUMIFS"):
                purpose = "Calculate the sum of values"
            elif first == "PRODUCT":
                purpose = "Calculate the product of values"
            elif "ROUND" in first:
                purpose = "Round numerical values"
            else:
                purpose = "Perform mathematical calculations"
        else:
            purpose = {
                FormulaCategory.TEXT: "Manipulate and format text values",
                FormulaCategory.DATE_TIME: "Work with dates and times",
                FormulaCategory.REFERENCE: "Reference and manipulate cell addresses",
                FormulaCategory.ARRAY: "Perform array or matrix operations",
                FormulaCategory.DATABASE: "Query and aggregate data like a database",
                FormulaCategory.ENGINEERING: "Perform engineering calculations or conversions",
                FormulaCategory.INFORMATION: "Check data types and cell information",
                FormulaCategory.CUSTOM: "Execute custom or user-defined operations",
            }.get(info.type, purpose)

        if cell_address:
            return f"{purpose} for cell {cell_address}"
        return purpose

    def _inputs(self, tree: ParsedFormula) -> List[str]:
        inputs: List[str] = []
        seen = set()

        def visit(node: ParsedFormula):
            if isinstance(node, ReferenceNode):
                text = self._reference_text(node)
                if text not in seen:
                    seen.add(text)
                    inputs.append(f"Range {text} (multiple cells)" if node.is_range else f"Cell {text}")
            elif isinstance(node, ConstantNode):
                if node.value_type == "number":
                    inputs.append(f"Constant value: {format_number(node.value)}")
                elif node.value_type == "text" and node.value != "":
                    inputs.append(f'Text value: "{node.value}"')
            for child in children(node):
                visit(child)

        visit(tree)
        return inputs or ["No direct inputs"]

    def _output(self, tree: ParsedFormula, info: FormulaTypeInfo) -> str:
        if isinstance(tree, ConstantNode):
            return f"Returns the constant value: {self._constant_text(tree)}"
        if isinstance(tree, ReferenceNode):
            return f"Returns the value from {self._reference_text(tree)}"
        return OUTPUT_DESCRIPTIONS.get(info.type, "Returns a calculated value")

    def _steps(self, tree: ParsedFormula) -> List[str]:
        if isinstance(tree, FunctionNode):
            steps = [f"Apply {tree.name} function"]
            for idx, arg in enumerate(tree.args, start=1):
                steps.append(f"  {idx}. Use {self.render(arg)}")
            return steps
        if isinstance(tree, OperatorNode):
            return [f"Calculate: {self.render(tree)}"]
        return ["Direct value reference or constant"]

    def _warnings(self, tree: ParsedFormula, info: FormulaTypeInfo) -> List[str]:
        warnings: List[str] = []
        flags = info.characteristics
        if flags.max_depth > 5:
            warnings.append("Formula has deep nesting which may be hard to understand and maintain")
        if flags.reference_count > 20:
            warnings.append("Formula references many cells which could impact performance")
        volatile = [name for name in info.functions if name in VOLATILE_FUNCTIONS]
        if volatile:
            warnings.append(f"Volatile functions recalculate on every change: {', '.join(volatile)}")
        if "INDIRECT" in info.functions:
            warnings.append("INDIRECT function prevents dependency tracking and may cause calculation issues")
        if "VLOOKUP" in info.functions and "IFERROR" not in info.functions:
            warnings.append("VLOOKUP without error handling may show #N/A errors")
        if self._has_error(tree):
            warnings.append("Formula has syntax errors and will not calculate")
        return warnings

    def _suggestions(self, tree: ParsedFormula, info: FormulaTypeInfo) -> List[str]:
        suggestions: List[str] = []
        if self._nested_if_depth(tree) >= 2:
            suggestions.append("Replace nested IF functions with IFS or SWITCH")
        if "VLOOKUP" in info.functions:
            suggestions.append("Consider using XLOOKUP or INDEX/MATCH for more flexibility")
        if info.complexity == ComplexityBucket.COMPLEX:
            suggestions.append("Consider breaking this complex formula into smaller, named components")
        if info.type == FormulaCategory.LOOKUP and "IFERROR" not in info.functions:
            suggestions.append("Add IFERROR to handle lookup failures gracefully")
        flags = info.characteristics
        if flags.has_nested_functions and flags.max_depth > 3:
            suggestions.append("Use helper columns to simplify nested calculations")
        return suggestions

    def _has_error(self, tree: ParsedFormula) -> bool:
        if isinstance(tree, ErrorNode):
            return True
        return any(self._has_error(child) for child in children(tree))

    def _nested_if_depth(self, tree: ParsedFormula) -> int:
        def visit(node: ParsedFormula) -> int:
            inner = max((visit(child) for child in children(node)), default=0)
            if isinstance(node, FunctionNode) and node.name == "IF":
                return inner + 1
            return inner

        return visit(tree)

    def _reference_text(self, node: ReferenceNode) -> str:
        return f"{node.sheet}!{node.reference}" if node.sheet else node.reference

    def _constant_text(self, node: ConstantNode) -> str:
        if node.value_type == "boolean":
            return "TRUE" if node.value else "FALSE"
        if node.value_type == "number":
            return format_number(node.value)
        return f'"{node.value}"'
