"""In-memory DOM snapshot storage with capacity-based eviction."""

import itertools
import logging
from collections import OrderedDict
from typing import List, Optional

from .exceptions import SnapshotNotFoundError
from .models.snapshot import DomSnapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Capacity-bounded snapshot storage.

    Features:
    - Oldest-first eviction once ``capacity`` is exceeded
    - Id generation for snapshots that arrive without one
    - Snapshots are frozen models and never modified after storing
    """

    def __init__(self, capacity: int = 20):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._snapshots: "OrderedDict[str, DomSnapshot]" = OrderedDict()
        self._counter = itertools.count(1)

    def store(self, snapshot: DomSnapshot) -> str:
        """
        Store a snapshot and return its id.

        Args:
            snapshot: Snapshot received from the extension

        Returns:
            str: Id under which the snapshot can be diffed later
        """
        if not snapshot.id:
            snapshot = snapshot.model_copy(update={"id": f"snap_{next(self._counter)}"})

        # Re-storing an id moves it to the newest position
        self._snapshots.pop(snapshot.id, None)
        self._snapshots[snapshot.id] = snapshot

        while len(self._snapshots) > self.capacity:
            evicted_id, _ = self._snapshots.popitem(last=False)
            logger.debug(f"Evicted snapshot {evicted_id} (capacity {self.capacity})")

        logger.debug(
            f"Stored snapshot {snapshot.id} ({len(snapshot.elements)} elements)"
        )
        return snapshot.id

    def get(self, snapshot_id: str) -> Optional[DomSnapshot]:
        return self._snapshots.get(snapshot_id)

    def require(self, snapshot_id: str) -> DomSnapshot:
        """
        Get a snapshot or fail.

        Raises:
            SnapshotNotFoundError: If the id is unknown or was evicted
        """
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return snapshot

    def ids(self) -> List[str]:
        """Stored ids, oldest first."""
        return list(self._snapshots)

    def clear(self) -> int:
        """
        Remove all snapshots.

        Returns:
            int: Number of snapshots removed
        """
        removed = len(self._snapshots)
        self._snapshots.clear()
        if removed > 0:
            logger.info(f"Cleared {removed} snapshot(s)")
        return removed

    def __contains__(self, snapshot_id: object) -> bool:
        return snapshot_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
