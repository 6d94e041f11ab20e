"""
MonitoringManager: programmatic access to cache, queue and sync health
for the offline cache controller.
"""

import os
import threading
import time
from typing import Any, Dict


class MonitoringManager:
    def __init__(self, controller, storage, db_manager, write_queue, throttle):
        """Initialize with references to core components."""
        self.controller = controller
        self.storage = storage
        self.db_manager = db_manager
        self.write_queue = write_queue
        self.throttle = throttle
        self.start_time = getattr(controller, "start_time", None) or time.time()

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return stores, entry counts for the current store, and hit/miss rates."""
        stats: Dict[str, Any] = {}
        try:
            current = self.controller.cache_name
            counts = self.storage.entry_counts()
            raw = self.storage.get_stats()
            lookups = raw["hits"] + raw["misses"]
            stats["current_store"] = current
            stats["stores"] = self.storage.keys()
            stats["stale_stores"] = [name for name in stats["stores"] if name != current]
            stats["current_entries"] = counts.get(current, 0)
            stats["entries_per_store"] = counts
            stats["hit_count"] = raw["hits"]
            stats["miss_count"] = raw["misses"]
            stats["hit_rate"] = raw["hits"] / lookups if lookups else 0.0
            stats["puts"] = raw["puts"]
            stats["stores_deleted"] = raw["stores_deleted"]
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_queue_stats(self) -> Dict[str, Any]:
        """Return the number of deferred writes and the oldest one's age."""
        stats: Dict[str, Any] = {}
        try:
            pending = self.write_queue.list_pending()
            stats["backend"] = type(self.write_queue).__name__
            stats["pending"] = len(pending)
            stats["oldest_age_seconds"] = time.time() - min(item.created_at for item in pending) if pending else None
            stats["failed_attempts"] = sum(item.attempts for item in pending)
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_sync_stats(self) -> Dict[str, Any]:
        """Return the reconciliation throttle state."""
        stats: Dict[str, Any] = {}
        try:
            state = self.throttle.get_state()
            stats["last_attempt"] = state.last_attempt
            stats["passes"] = state.attempts
            stats["throttled_triggers"] = state.skipped
            stats["min_interval_seconds"] = self.throttle.min_interval
            stats["seconds_until_allowed"] = self.throttle.seconds_until_allowed()
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_database_stats(self) -> Dict[str, Any]:
        """Return database file path, size and health."""
        stats: Dict[str, Any] = {}
        try:
            db_path = self.db_manager.database_path
            if getattr(self.db_manager, "in_memory", False):
                stats["db_file_path"] = "in_memory"
                stats["db_file_size_bytes"] = "in_memory"
            else:
                stats["db_file_path"] = db_path
                stats["db_file_size_bytes"] = os.path.getsize(db_path) if os.path.exists(db_path) else "file_not_found"
            try:
                self.db_manager.execute_query("SELECT 1")
                stats["db_health"] = "healthy"
            except Exception:
                stats["db_health"] = "error"
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_controller_health(self) -> Dict[str, Any]:
        """Return lifecycle state, uptime and active threads."""
        stats: Dict[str, Any] = {}
        try:
            stats["state"] = self.controller.state.value
            stats["cache_name"] = self.controller.cache_name
            stats["uptime_seconds"] = time.time() - self.start_time
            stats["active_threads"] = threading.active_count()
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_status(self) -> Dict[str, Any]:
        return {
            "controller": self.get_controller_health(),
            "cache": self.get_cache_stats(),
            "queue": self.get_queue_stats(),
            "sync": self.get_sync_stats(),
            "database": self.get_database_stats(),
        }
