"""Versioned cache stores backed by SQLite."""

import hashlib
import json
import threading
import time
import zlib
from typing import Callable, Dict, List, Optional, Tuple

from rashtrackr_offline.core.errors import InstallError, NetworkUnavailable
from rashtrackr_offline.database.manager import DatabaseManager
from rashtrackr_offline.database.models import Request, Response
from rashtrackr_offline.utils.logger import get_logger

_ENTRY_COLUMNS = "status, status_text, headers, body, compressed, response_type, response_url, redirected"


def generate_cache_key(method: str, url: str) -> str:
    """Cache key for an exact request identity (method + URL).

    URLs are not normalised: two spellings of one resource are two entries.
    """
    return hashlib.sha256(f"{method.upper()}:{url}".encode("utf-8")).hexdigest()


class CacheStore:
    """A single named cache store.

    Only GET requests can be stored or matched. Entries are overwritten in
    place; there is no TTL and no eviction.

    Example:
        >>> storage = CacheStorage(DatabaseManager(":memory:"))
        >>> store = storage.open("rashtrackr-v1")
        >>> store.put(Request("https://app.example/"), Response(b"<html>"))
        >>> store.match(Request("https://app.example/")).body
        b'<html>'
    """

    def __init__(self, storage: "CacheStorage", name: str) -> None:
        self.storage = storage
        self.name = name
        self.logger = storage.logger

    @property
    def db_manager(self) -> DatabaseManager:
        return self.storage.db_manager

    def match(self, request: Request) -> Optional[Response]:
        """Return the stored response for ``request`` or None on a miss."""
        if request.method != "GET":
            self.storage._record("misses")
            return None
        rows = self.db_manager.execute_query(
            f"SELECT {_ENTRY_COLUMNS} FROM cache_entries WHERE store_name = ? AND cache_key = ?",
            (self.name, generate_cache_key(*request.identity)),
        )
        if not rows:
            self.storage._record("misses")
            return None
        self.storage._record("hits")
        return self.storage._row_to_response(rows[0])

    def put(self, request: Request, response: Response) -> bool:
        """Store a copy of ``response`` under ``request``.

        Returns:
            True if stored, False if the body exceeds the size limit

        Raises:
            ValueError: If the request is not a GET
        """
        if request.method != "GET":
            raise ValueError(f"Only GET requests can be cached, got {request.method}")
        body = bytes(response.body)
        if len(body) > self.storage.max_response_size:
            self.logger.debug(f"Not caching {request.url}: {len(body)} bytes exceeds limit")
            return False
        self.db_manager.execute_update(*self._insert_statement(request, response, body))
        self.storage._record("puts")
        return True

    def _insert_statement(self, request: Request, response: Response, body: bytes) -> Tuple[str, tuple]:
        compressed = False
        if len(body) > self.storage.compression_threshold:
            packed = zlib.compress(body)
            if len(packed) < len(body):
                body = packed
                compressed = True
        return (
            "REPLACE INTO cache_entries (store_name, cache_key, method, url, status, status_text, headers, "
            "body, compressed, response_type, response_url, redirected, stored_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                self.name,
                generate_cache_key(*request.identity),
                request.method,
                request.url,
                response.status,
                response.status_text,
                json.dumps(response.headers, separators=(",", ":")),
                body,
                int(compressed),
                response.response_type,
                response.url or request.url,
                int(response.redirected),
                time.time(),
            ),
        )

    def add_all(
        self, requests: List[Request], fetch: Callable[[Request], Response], strict: bool = True
    ) -> Tuple[List[str], List[str]]:
        """Fetch every request and store the successful responses.

        In strict mode the operation is all-or-nothing: if any request fails
        nothing is stored and ``InstallError`` is raised. Otherwise each
        usable response is stored and failures are reported.

        Returns:
            Tuple of (cached urls, failed urls)
        """
        fetched: List[Tuple[Request, Response]] = []
        failed: List[str] = []
        for request in requests:
            try:
                response = fetch(request)
            except NetworkUnavailable as e:
                self.logger.warning(f"Precache of {request.url} failed: {e.reason}")
                failed.append(request.url)
                continue
            if not response.ok:
                self.logger.warning(f"Precache of {request.url} failed: HTTP {response.status}")
                failed.append(request.url)
                continue
            fetched.append((request, response))

        if failed and strict:
            raise InstallError(self.name, failed)

        statements = []
        cached = []
        for request, response in fetched:
            body = bytes(response.body)
            if len(body) > self.storage.max_response_size:
                self.logger.warning(f"Precache of {request.url} skipped: {len(body)} bytes exceeds limit")
                failed.append(request.url)
                continue
            statements.append(self._insert_statement(request, response, body))
            cached.append(request.url)
        if failed and strict:
            raise InstallError(self.name, failed)
        if statements:
            self.db_manager.execute_many(statements)
            self.storage._record("puts", len(statements))
        return cached, failed

    def delete(self, request: Request) -> bool:
        """Remove a single entry."""
        removed = self.db_manager.execute_update(
            "DELETE FROM cache_entries WHERE store_name = ? AND cache_key = ?",
            (self.name, generate_cache_key(*request.identity)),
        )
        return removed > 0

    def keys(self) -> List[str]:
        """URLs stored in this cache, oldest first."""
        rows = self.db_manager.execute_query(
            "SELECT url FROM cache_entries WHERE store_name = ? ORDER BY stored_at, url", (self.name,)
        )
        return [row[0] for row in rows]

    def count(self) -> int:
        return self.db_manager.execute_query("SELECT COUNT(*) FROM cache_entries WHERE store_name = ?", (self.name,))[
            0
        ][0]


class CacheStorage:
    """The set of named cache stores.

    Mirrors the browser cache storage API: stores are opened by name,
    enumerated, and deleted as a whole.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        max_response_size: int = 10485760,
        compression_threshold: int = 1024,
    ) -> None:
        self.db_manager = db_manager
        self.max_response_size = max_response_size
        self.compression_threshold = compression_threshold
        self.logger = get_logger("cache.storage")
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "puts": 0, "stores_deleted": 0}

    def _record(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[key] += amount

    def _row_to_response(self, row: tuple) -> Response:
        status, status_text, headers, body, compressed, response_type, response_url, redirected = row
        body = bytes(body)
        if compressed:
            body = zlib.decompress(body)
        return Response(
            body=body,
            status=status,
            status_text=status_text,
            headers=json.loads(headers),
            response_type=response_type,
            url=response_url,
            redirected=bool(redirected),
        )

    def open(self, name: str) -> CacheStore:
        """Open a store, creating it if it does not exist."""
        self.db_manager.execute_update(
            "INSERT OR IGNORE INTO cache_stores (name, created_at) VALUES (?, ?)", (name, time.time())
        )
        return CacheStore(self, name)

    def has(self, name: str) -> bool:
        return bool(self.db_manager.execute_query("SELECT 1 FROM cache_stores WHERE name = ?", (name,)))

    def keys(self) -> List[str]:
        """Names of all stores in creation order."""
        rows = self.db_manager.execute_query("SELECT name FROM cache_stores ORDER BY created_at, name")
        return [row[0] for row in rows]

    def delete(self, name: str) -> bool:
        """Delete a store and all of its entries."""
        if not self.has(name):
            return False
        self.db_manager.execute_many(
            [
                ("DELETE FROM cache_entries WHERE store_name = ?", (name,)),
                ("DELETE FROM cache_stores WHERE name = ?", (name,)),
            ]
        )
        self._record("stores_deleted")
        return True

    def match(self, request: Request, cache_name: Optional[str] = None) -> Optional[Response]:
        """Look up a request in one store, or in every store in creation order."""
        names = [cache_name] if cache_name else self.keys()
        for name in names:
            if not self.has(name):
                continue
            response = CacheStore(self, name).match(request)
            if response is not None:
                return response
        return None

    def entry_counts(self) -> Dict[str, int]:
        rows = self.db_manager.execute_query(
            "SELECT s.name, COUNT(e.cache_key) FROM cache_stores s "
            "LEFT JOIN cache_entries e ON e.store_name = s.name GROUP BY s.name"
        )
        return {name: count for name, count in rows}

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)
