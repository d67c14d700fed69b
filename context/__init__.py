"""Change history and multimodal context assembly"""

from .history import ChangeHistoryStore
from .multimodal import MultiModalSpreadsheetContext

__all__ = ["ChangeHistoryStore", "MultiModalSpreadsheetContext"]
