"""Classify formulas into semantic categories."""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Union

from core.enums import ComplexityBucket, FormulaCategory
from core.models import (
    ConstantNode,
    FormulaCharacteristics,
    FormulaTypeInfo,
    FunctionNode,
    ParsedFormula,
    ReferenceNode,
)
from .parser import FormulaParser, children

FUNCTION_CATEGORIES: Dict[FormulaCategory, Set[str]] = {
    FormulaCategory.FINANCIAL: {
        "PV", "FV", "PMT", "RATE", "NPER", "NPV", "IRR", "XNPV", "XIRR",
        "SLN", "DDB", "VDB", "PPMT", "IPMT", "CUMIPMT", "CUMPRINC",
        "PRICE", "YIELD", "DURATION", "MDURATION", "ACCRINT", "ACCRINTM",
    },
    FormulaCategory.STATISTICAL: {
        "AVERAGE", "AVERAGEIF", "AVERAGEIFS", "MEDIAN", "MODE", "STDEV",
        "STDEVP", "VAR", "VARP", "CORREL", "COVAR", "FORECAST", "TREND",
        "PERCENTILE", "QUARTILE", "RANK", "PERCENTRANK", "NORM.DIST",
        "NORM.INV", "T.DIST", "T.INV", "CHISQ.DIST", "F.DIST",
        "COUNT", "COUNTA", "COUNTIF", "COUNTIFS", "COUNTBLANK", "MAX", "MIN",
        "MAXIFS", "MINIFS", "LARGE", "SMALL",
    },
    FormulaCategory.LOOKUP: {
        "VLOOKUP", "HLOOKUP", "LOOKUP", "INDEX", "MATCH", "OFFSET",
        "INDIRECT", "CHOOSE", "GETPIVOTDATA", "XLOOKUP", "XMATCH",
        "FILTER", "SORT", "SORTBY", "UNIQUE",
    },
    FormulaCategory.LOGICAL: {
        "IF", "IFS", "AND", "OR", "NOT", "XOR", "TRUE", "FALSE",
        "IFERROR", "IFNA", "SWITCH",
    },
    FormulaCategory.MATHEMATICAL: {
        "SUM", "SUMIF", "SUMIFS", "PRODUCT", "SQRT", "POWER", "EXP",
        "LN", "LOG", "LOG10", "ABS", "ROUND", "ROUNDUP", "ROUNDDOWN",
        "CEILING", "FLOOR", "MOD", "INT", "TRUNC", "SIGN", "RAND",
        "RANDBETWEEN", "PI", "SIN", "COS", "TAN", "ASIN", "ACOS", "ATAN",
    },
    FormulaCategory.TEXT: {
        "CONCATENATE", "CONCAT", "TEXTJOIN", "LEFT", "RIGHT", "MID",
        "LEN", "FIND", "SEARCH", "REPLACE", "SUBSTITUTE", "UPPER",
        "LOWER", "PROPER", "TRIM", "CLEAN", "TEXT", "VALUE", "FIXED",
    },
    FormulaCategory.DATE_TIME: {
        "TODAY", "NOW", "DATE", "TIME", "YEAR", "MONTH", "DAY",
        "HOUR", "MINUTE", "SECOND", "WEEKDAY", "WEEKNUM", "WORKDAY",
        "NETWORKDAYS", "DATEDIF", "DATEVALUE", "TIMEVALUE", "DAYS",
        "DAYS360", "EDATE", "EOMONTH", "YEARFRAC",
    },
    FormulaCategory.REFERENCE: {
        "ADDRESS", "AREAS", "COLUMN", "COLUMNS", "ROW", "ROWS",
        "FORMULATEXT", "HYPERLINK", "TRANSPOSE",
    },
    FormulaCategory.ARRAY: {
        "SUMPRODUCT", "MMULT", "TRANSPOSE", "FREQUENCY", "GROWTH",
        "LINEST", "LOGEST", "MINVERSE", "MDETERM", "SEQUENCE", "RANDARRAY",
    },
    FormulaCategory.DATABASE: {
        "DSUM", "DAVERAGE", "DCOUNT", "DCOUNTA", "DMAX", "DMIN",
        "DPRODUCT", "DSTDEV", "DSTDEVP", "DVAR", "DVARP", "DGET",
    },
    FormulaCategory.ENGINEERING: {
        "CONVERT", "BIN2DEC", "BIN2HEX", "BIN2OCT", "DEC2BIN",
        "DEC2HEX", "DEC2OCT", "HEX2BIN", "HEX2DEC", "HEX2OCT",
        "COMPLEX", "IMABS", "IMAGINARY", "IMREAL", "IMSUM",
    },
    FormulaCategory.INFORMATION: {
        "ISBLANK", "ISERROR", "ISLOGICAL", "ISNA", "ISNONTEXT",
        "ISNUMBER", "ISTEXT", "TYPE", "NA", "ERROR.TYPE", "ISREF",
        "ISFORMULA", "FORMULATEXT", "SHEET", "SHEETS", "CELL", "INFO",
    },
}

# Declaration order of FormulaCategory doubles as the tie-break priority.
CATEGORY_PRIORITY: List[FormulaCategory] = [
    category for category in FormulaCategory if category != FormulaCategory.UNKNOWN
]

CONDITIONAL_FUNCTIONS = {"IF", "IFS", "AND", "OR", "NOT"}
AGGREGATION_FUNCTIONS = {"SUM", "AVERAGE", "COUNT", "MAX", "MIN"}
VOLATILE_FUNCTIONS = {"NOW", "TODAY", "RAND", "RANDBETWEEN", "OFFSET", "INDIRECT"}

TYPE_DESCRIPTIONS: Dict[FormulaCategory, str] = {
    FormulaCategory.FINANCIAL: "Financial calculations (NPV, IRR, loan payments, etc.)",
    FormulaCategory.STATISTICAL: "Statistical analysis (averages, deviations, correlations)",
    FormulaCategory.LOOKUP: "Data lookup and reference operations",
    FormulaCategory.LOGICAL: "Conditional logic and boolean operations",
    FormulaCategory.MATHEMATICAL: "Mathematical calculations and operations",
    FormulaCategory.TEXT: "Text manipulation and formatting",
    FormulaCategory.DATE_TIME: "Date and time calculations",
    FormulaCategory.REFERENCE: "Cell and range reference operations",
    FormulaCategory.ARRAY: "Array and matrix operations",
    FormulaCategory.DATABASE: "Database-style operations on ranges",
    FormulaCategory.ENGINEERING: "Engineering and conversion functions",
    FormulaCategory.INFORMATION: "Information and type checking functions",
    FormulaCategory.CUSTOM: "Custom or user-defined functions",
    FormulaCategory.UNKNOWN: "Unknown or unrecognized formula type",
}


def categories_of(function_name: str) -> List[FormulaCategory]:
    """All categories a function belongs to; unknown names are custom"""
    name = function_name.upper()
    found = [cat for cat in CATEGORY_PRIORITY if name in FUNCTION_CATEGORIES.get(cat, set())]
    return found or [FormulaCategory.CUSTOM]


class FormulaTypeDetector:
    """Detect the semantic category and complexity bucket of a formula"""

    def __init__(self, parser: Optional[FormulaParser] = None):
        self.parser = parser or FormulaParser()

    def detect(self, formula: Union[str, ParsedFormula]) -> FormulaTypeInfo:
        tree = self.parser.parse(formula) if isinstance(formula, str) else formula
        calls = self._collect_functions(tree)
        characteristics = self._analyze_characteristics(tree)

        scores: Dict[FormulaCategory, int] = {}
        for name in calls:
            for category in categories_of(name):
                scores[category] = scores.get(category, 0) + 1

        category = FormulaCategory.UNKNOWN
        best = 0
        for candidate in CATEGORY_PRIORITY:
            score = scores.get(candidate, 0)
            if score > best:
                best = score
                category = candidate

        unique: List[str] = []
        for name in calls:
            if name not in unique:
                unique.append(name)

        return FormulaTypeInfo(
            type=category,
            confidence=best / len(calls) if calls else 0.0,
            functions=unique,
            complexity=self._bucket(characteristics),
            characteristics=characteristics,
        )

    def category_of(self, function_name: str) -> FormulaCategory:
        return categories_of(function_name)[0]

    def describe_type(self, category: FormulaCategory) -> str:
        return TYPE_DESCRIPTIONS.get(category, "Unknown formula type")

    def _collect_functions(self, tree: ParsedFormula) -> List[str]:
        calls: List[str] = []

        def visit(node: ParsedFormula):
            if isinstance(node, FunctionNode):
                calls.append(node.name)
            for child in children(node):
                visit(child)

        visit(tree)
        return calls

    def _analyze_characteristics(self, tree: ParsedFormula) -> FormulaCharacteristics:
        flags = FormulaCharacteristics()

        def visit(node: ParsedFormula, depth: int):
            flags.max_depth = max(flags.max_depth, depth)
            if isinstance(node, FunctionNode):
                name = node.name
                if depth > 0:
                    flags.has_nested_functions = True
                if name in CONDITIONAL_FUNCTIONS:
                    flags.has_conditionals = True
                if name in FUNCTION_CATEGORIES[FormulaCategory.LOOKUP]:
                    flags.has_lookups = True
                if name in AGGREGATION_FUNCTIONS:
                    flags.has_aggregations = True
                if name in FUNCTION_CATEGORIES[FormulaCategory.ARRAY]:
                    flags.has_array_operations = True
                for arg in node.args:
                    visit(arg, depth + 1)
                return
            if isinstance(node, ReferenceNode):
                flags.reference_count += 1
            elif isinstance(node, ConstantNode) and str(node.value).startswith("{"):
                flags.has_array_operations = True
            for child in children(node):
                visit(child, depth)

        visit(tree, 0)
        return flags

    def _bucket(self, flags: FormulaCharacteristics) -> ComplexityBucket:
        score = 0
        if flags.has_nested_functions:
            score += 2
        if flags.has_array_operations:
            score += 3
        if flags.has_conditionals:
            score += 1
        if flags.has_lookups:
            score += 2
        if flags.max_depth > 3:
            score += 2
        if flags.reference_count > 10:
            score += 1

        if score >= 5:
            return ComplexityBucket.COMPLEX
        if score >= 2:
            return ComplexityBucket.MODERATE
        return ComplexityBucket.SIMPLE
