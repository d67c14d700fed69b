from .builder import DependencyGraphBuilder

__all__ = ["DependencyGraphBuilder"]
