"""Caller-owned, thread-safe history of cell snapshots"""

from __future__ import annotations

from collections import deque
import logging
import threading
from datetime import datetime
from typing import Deque, Dict, List, Optional

from config import settings
from core.enums import ChangeType
from core.models import CellChange, CellSnapshot, CellValue, Grid

logger = logging.getLogger(__name__)


class ChangeHistoryStore:
    """Per-address snapshot lists, bounded to the most recent snapshots"""

    def __init__(self, max_snapshots: Optional[int] = None):
        self.max_snapshots = max_snapshots or settings.HISTORY_MAX_SNAPSHOTS
        self._lock = threading.Lock()
        self._snapshots: Dict[str, Deque[CellSnapshot]] = {}

    def record(
        self,
        address: str,
        value: CellValue = None,
        formula: Optional[str] = None,
        source: str = "manual",
        timestamp: Optional[datetime] = None,
    ) -> CellSnapshot:
        snapshot = CellSnapshot(
            address=address,
            value=value,
            formula=formula,
            source=source,
            timestamp=timestamp or datetime.now(),
        )
        with self._lock:
            entries = self._snapshots.setdefault(address, deque(maxlen=self.max_snapshots))
            entries.append(snapshot)
        return snapshot

    def record_grid(self, grid: Grid, source: str = "snapshot") -> int:
        """Snapshot every populated cell with one shared timestamp"""
        timestamp = datetime.now()
        count = 0
        for row, col, value, formula in grid.iter_cells():
            if not grid.is_populated(row, col):
                continue
            self.record(grid.cell_address(row, col), value, formula, source, timestamp)
            count += 1
        logger.debug("Recorded %d snapshots from %s (%s)", count, grid.address, source)
        return count

    def history(self, address: str) -> List[CellSnapshot]:
        with self._lock:
            return list(self._snapshots.get(address, ()))

    def addresses(self) -> List[str]:
        with self._lock:
            return list(self._snapshots)

    def recent_changes(self, limit: int = 10) -> List[CellChange]:
        """Diff of the two latest snapshots per address, newest first"""
        with self._lock:
            latest = {address: list(entries)[-2:] for address, entries in self._snapshots.items() if entries}

        changes: List[CellChange] = []
        for address, pair in latest.items():
            change = self._diff(address, pair)
            if change is not None:
                changes.append(change)
        changes.sort(key=lambda change: change.timestamp, reverse=True)
        return changes[:limit]

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    def _diff(self, address: str, pair: List[CellSnapshot]) -> Optional[CellChange]:
        current = pair[-1]
        if len(pair) == 1:
            return CellChange(
                address=address,
                change_type=ChangeType.ADDED,
                new_value=current.value,
                new_formula=current.formula,
                timestamp=current.timestamp,
            )

        previous = pair[0]
        formula_changed = previous.formula != current.formula
        value_changed = previous.value != current.value
        if formula_changed and value_changed:
            change_type = ChangeType.MODIFIED
        elif formula_changed:
            change_type = ChangeType.FORMULA_CHANGED
        elif value_changed:
            change_type = ChangeType.VALUE_CHANGED
        else:
            return None

        return CellChange(
            address=address,
            change_type=change_type,
            old_value=previous.value,
            new_value=current.value,
            old_formula=previous.formula,
            new_formula=current.formula,
            timestamp=current.timestamp,
        )
