"""Token-bounded grid encoders"""

from .base import TRUNCATION_MARKER, data_statistics, estimate_tokens, truncate_to_budget
from .compressed import encode_compressed
from .compressed_builder import CompressedGridBuilder
from .grid_serializer import GridSerializer
from .sparse import encode_sparse
from .spatial import SpatialSerializer
from .table import encode_table

__all__ = [
    "TRUNCATION_MARKER",
    "estimate_tokens",
    "data_statistics",
    "truncate_to_budget",
    "encode_table",
    "encode_sparse",
    "encode_compressed",
    "SpatialSerializer",
    "GridSerializer",
    "CompressedGridBuilder",
]
