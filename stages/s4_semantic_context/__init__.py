from .builder import SemanticGridBuilder
from .query import QueryClassifier
from .representations import RepresentationBuilder

__all__ = ["SemanticGridBuilder", "QueryClassifier", "RepresentationBuilder"]
