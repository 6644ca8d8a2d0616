"""Latest validated result per subscription."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import SubscriptionKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """The most recent normalized result for a subscription."""
    key: SubscriptionKey
    data: Any
    fetched_at: datetime


class SnapshotStore:
    """
    Thread-safe map of subscription key to latest snapshot.

    Each slot has a single writer (its poller). Slots are replaced whole,
    never patched.
    """

    def __init__(self):
        self._slots: Dict[SubscriptionKey, Snapshot] = {}
        self._lock = threading.Lock()

    def write(self, key: SubscriptionKey, data: Any) -> Snapshot:
        """Replace the snapshot for ``key``."""
        snapshot = Snapshot(key=key, data=data, fetched_at=datetime.now())
        with self._lock:
            self._slots[key] = snapshot
        logger.debug(f"Stored snapshot for {key}")
        return snapshot

    def get(self, key: SubscriptionKey) -> Optional[Snapshot]:
        with self._lock:
            return self._slots.get(key)

    def data(self, key: SubscriptionKey, default: Any = None) -> Any:
        """Return the stored data for ``key``, or ``default`` if none yet."""
        snapshot = self.get(key)
        return default if snapshot is None else snapshot.data

    def discard(self, key: SubscriptionKey) -> bool:
        """Drop the slot for ``key``. Returns True if one existed."""
        with self._lock:
            return self._slots.pop(key, None) is not None

    def keys(self) -> List[SubscriptionKey]:
        with self._lock:
            return list(self._slots)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
