"""Database manager: connection pooling, schema, thread safety."""

import random
import sqlite3
import threading
import time
import uuid
from typing import Any, List

from rashtrackr_offline.utils.logger import get_logger

SCHEMA = [
    # One row per named cache store
    """CREATE TABLE IF NOT EXISTS cache_stores (
        name TEXT PRIMARY KEY,
        created_at REAL NOT NULL
    );""",
    # Stored responses, keyed by store and request identity
    """CREATE TABLE IF NOT EXISTS cache_entries (
        store_name TEXT NOT NULL,
        cache_key TEXT NOT NULL,
        method TEXT NOT NULL,
        url TEXT NOT NULL,
        status INTEGER NOT NULL,
        status_text TEXT NOT NULL,
        headers TEXT NOT NULL,
        body BLOB NOT NULL,
        compressed INTEGER NOT NULL DEFAULT 0,
        response_type TEXT NOT NULL,
        response_url TEXT NOT NULL,
        redirected INTEGER NOT NULL DEFAULT 0,
        stored_at REAL NOT NULL,
        PRIMARY KEY (store_name, cache_key)
    );""",
    # Writes deferred while offline
    """CREATE TABLE IF NOT EXISTS deferred_writes (
        id TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        token TEXT,
        created_at REAL NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    );""",
    "CREATE INDEX IF NOT EXISTS idx_cache_entries_store ON cache_entries(store_name);",
    "CREATE INDEX IF NOT EXISTS idx_deferred_writes_created ON deferred_writes(created_at);",
]


class DatabaseManager:
    """Manages SQLite database operations with thread safety and connection pooling."""

    def __init__(self, database_path: str):
        self.logger = get_logger("database.manager")
        # Each ":memory:" manager gets its own shared-cache database so pooled
        # connections see the same data without leaking between managers
        if database_path == ":memory:":
            self.database_path = f"file:rashtrackr_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._use_uri = True
            self.in_memory = True
        else:
            self.database_path = database_path
            self._use_uri = database_path.startswith("file:")
            self.in_memory = "mode=memory" in database_path
        self._lock = threading.Lock()
        self._pool: List[sqlite3.Connection] = []
        self._max_pool_size = 5
        self._closed = False
        self._initialize_connections()
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path, check_same_thread=False, uri=self._use_uri)
        # WAL for concurrent readers; in-memory databases ignore it
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA temp_store=memory")
        # 5 second timeout on locks
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _initialize_connections(self):
        for _ in range(self._max_pool_size):
            self._pool.append(self._connect())

    def _initialize_schema(self):
        conn = self.get_connection()
        try:
            cur = conn.cursor()
            for stmt in SCHEMA:
                cur.execute(stmt)
            conn.commit()
        finally:
            self.return_connection(conn)

    def get_connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._pool:
                return self._pool.pop()
        return self._connect()

    def return_connection(self, conn: sqlite3.Connection):
        with self._lock:
            if not self._closed and len(self._pool) < self._max_pool_size:
                self._pool.append(conn)
                return
        conn.close()

    def execute_query(self, query: str, params: tuple = (), retries: int = 10, delay: float = 0.05) -> List[Any]:
        for attempt in range(retries):
            conn = self.get_connection()
            try:
                cur = conn.cursor()
                cur.execute(query, params)
                return cur.fetchall()
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and attempt < retries - 1:
                    # Exponential backoff with jitter to avoid thundering herd
                    backoff = delay * (2**attempt) + random.uniform(0, 0.1)
                    time.sleep(min(backoff, 1.0))
                    continue
                raise
            finally:
                self.return_connection(conn)
        return []

    def execute_update(self, query: str, params: tuple = (), retries: int = 10, delay: float = 0.05) -> int:
        for attempt in range(retries):
            conn = self.get_connection()
            try:
                cur = conn.cursor()
                cur.execute(query, params)
                conn.commit()
                return cur.rowcount
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and attempt < retries - 1:
                    backoff = delay * (2**attempt) + random.uniform(0, 0.1)
                    time.sleep(min(backoff, 1.0))
                    continue
                raise
            finally:
                self.return_connection(conn)
        return 0

    def execute_many(self, statements: List[tuple]) -> int:
        """Run several ``(query, params)`` statements in one transaction.

        Either every statement is committed or none is.
        """
        conn = self.get_connection()
        try:
            total = 0
            cur = conn.cursor()
            try:
                for query, params in statements:
                    cur.execute(query, params)
                    total += max(cur.rowcount, 0)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            return total
        finally:
            self.return_connection(conn)

    def close(self):
        """Close all pooled database connections."""
        with self._lock:
            self._closed = True
            while self._pool:
                conn = self._pool.pop()
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.debug(f"Error closing connection: {e}")

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass
