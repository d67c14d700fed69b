"""Grid analysis stages"""

from .s1_region_detection import RegionDetector
from .s2_pattern_analysis import PatternAnalyzer
from .s3_dependency_graph import DependencyGraphBuilder
from .s4_semantic_context import QueryClassifier, SemanticGridBuilder

__all__ = [
    "RegionDetector",
    "PatternAnalyzer",
    "DependencyGraphBuilder",
    "QueryClassifier",
    "SemanticGridBuilder",
]
