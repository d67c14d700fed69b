"""Core abstractions for Gridlens"""

from .models import *
from .enums import *
from .exceptions import *
from .interfaces import *

__all__ = [
    # Models
    "Grid",
    "FunctionNode",
    "OperatorNode",
    "ReferenceNode",
    "ConstantNode",
    "ErrorNode",
    "ParsedFormula",
    "FormulaTypeInfo",
    "FormulaDescription",
    "FormulaComplexity",
    "DependencyNode",
    "DependencyGraph",
    "FormulaValidationResult",
    "SemanticRegion",
    "FormulaPattern",
    "DataPattern",
    "PatternAnalysisResult",
    "TokenOptimizationOptions",
    "LLMFormattedGrid",
    "DataStatistics",
    "SemanticStructure",
    "StructuralRepresentation",
    "QueryClassification",
    "LLMContext",
    "CellSnapshot",
    "CellChange",
    "MultiModalRepresentation",
    # Enums
    "FormulaCategory",
    "ComplexityLevel",
    "RegionType",
    "FormulaPatternType",
    "DataPatternType",
    "QueryIntent",
    "RepresentationMode",
    "CompressionLevel",
    "GridFormat",
    "ChangeType",
    # Exceptions
    "GridlensError",
    "GridShapeError",
    "StageError",
    "SerializationError",
    "WorkbookLoadError",
    # Interfaces
    "Stage",
]
