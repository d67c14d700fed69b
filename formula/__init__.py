"""Formula parsing, classification and analysis"""

from .parser import FormulaParser
from .type_detector import FormulaTypeDetector
from .describer import FormulaDescriber
from .analyzer import FormulaAnalyzer

__all__ = [
    "FormulaParser",
    "FormulaTypeDetector",
    "FormulaDescriber",
    "FormulaAnalyzer",
]
