"""Storage for writes deferred while the client was offline."""

import json
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from rashtrackr_offline.database.manager import DatabaseManager
from rashtrackr_offline.database.models import DeferredWrite
from rashtrackr_offline.utils.logger import get_logger


class WriteQueue(ABC):
    """Pending deferred writes.

    An item stays in the queue until ``remove`` is called for it, which the
    reconciler only does after the backend acknowledged the replay.
    """

    @abstractmethod
    def enqueue(self, item: DeferredWrite) -> str:
        """Add an item and return its id."""

    @abstractmethod
    def list_pending(self) -> List[DeferredWrite]:
        """Return a snapshot of every queued item."""

    @abstractmethod
    def remove(self, item_id: str) -> bool:
        """Remove an item. Returns False if it was not queued."""

    def record_failure(self, item_id: str, error: str) -> None:
        """Note a failed replay attempt. Optional for implementations."""

    def count(self) -> int:
        return len(self.list_pending())

    def clear(self) -> int:
        removed = 0
        for item in self.list_pending():
            removed += int(self.remove(item.id))
        return removed


class InMemoryWriteQueue(WriteQueue):
    """Process-local queue, lost on restart."""

    def __init__(self) -> None:
        self._items: Dict[str, DeferredWrite] = {}
        self._lock = threading.Lock()

    def enqueue(self, item: DeferredWrite) -> str:
        with self._lock:
            self._items[item.id] = item
        return item.id

    def list_pending(self) -> List[DeferredWrite]:
        with self._lock:
            return [
                DeferredWrite(
                    payload=item.payload,
                    token=item.token,
                    id=item.id,
                    created_at=item.created_at,
                    attempts=item.attempts,
                    last_error=item.last_error,
                )
                for item in self._items.values()
            ]

    def remove(self, item_id: str) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None

    def record_failure(self, item_id: str, error: str) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is not None:
                item.attempts += 1
                item.last_error = error

    def count(self) -> int:
        with self._lock:
            return len(self._items)


class SQLiteWriteQueue(WriteQueue):
    """Durable queue stored in the controller's SQLite database."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager = db_manager
        self.logger = get_logger("sync.queue")

    def enqueue(self, item: DeferredWrite) -> str:
        self.db_manager.execute_update(
            "REPLACE INTO deferred_writes (id, payload, token, created_at, attempts, last_error) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (item.id, json.dumps(item.payload), item.token, item.created_at, item.attempts, item.last_error),
        )
        self.logger.debug(f"Queued deferred write {item.id}")
        return item.id

    def list_pending(self) -> List[DeferredWrite]:
        rows = self.db_manager.execute_query(
            "SELECT id, payload, token, created_at, attempts, last_error FROM deferred_writes "
            "ORDER BY created_at, id"
        )
        return [
            DeferredWrite(
                payload=json.loads(payload),
                token=token,
                id=item_id,
                created_at=created_at,
                attempts=attempts,
                last_error=last_error,
            )
            for item_id, payload, token, created_at, attempts, last_error in rows
        ]

    def get(self, item_id: str) -> Optional[DeferredWrite]:
        for item in self.list_pending():
            if item.id == item_id:
                return item
        return None

    def remove(self, item_id: str) -> bool:
        return self.db_manager.execute_update("DELETE FROM deferred_writes WHERE id = ?", (item_id,)) > 0

    def record_failure(self, item_id: str, error: str) -> None:
        self.db_manager.execute_update(
            "UPDATE deferred_writes SET attempts = attempts + 1, last_error = ? WHERE id = ?", (error, item_id)
        )

    def count(self) -> int:
        return self.db_manager.execute_query("SELECT COUNT(*) FROM deferred_writes")[0][0]

    def clear(self) -> int:
        return self.db_manager.execute_update("DELETE FROM deferred_writes")
