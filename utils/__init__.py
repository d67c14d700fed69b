"""Utility modules"""

from .cells import (
    cell_address,
    col_index,
    col_letter,
    expand_range,
    parse_cell,
    parse_origin,
    range_address,
    split_sheet,
)

__all__ = [
    "cell_address",
    "col_index",
    "col_letter",
    "expand_range",
    "parse_cell",
    "parse_origin",
    "range_address",
    "split_sheet",
]
