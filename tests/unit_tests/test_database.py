"""Unit tests for DatabaseManager: connection pooling, schema, transactions."""

import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import sqlite3
import threading

import pytest

from rashtrackr_offline.database.manager import DatabaseManager


@pytest.fixture(scope="function")
def db():
    dbm = DatabaseManager(":memory:")
    yield dbm
    dbm.close()


def test_schema_created(db):
    tables = db.execute_query("SELECT name FROM sqlite_master WHERE type='table';")
    table_names = {row[0] for row in tables}
    assert {"cache_stores", "cache_entries", "deferred_writes"} <= table_names


def test_memory_databases_are_isolated():
    first = DatabaseManager(":memory:")
    second = DatabaseManager(":memory:")
    try:
        first.execute_update("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("rashtrackr-v1", 1.0))
        assert first.execute_query("SELECT COUNT(*) FROM cache_stores")[0][0] == 1
        assert second.execute_query("SELECT COUNT(*) FROM cache_stores")[0][0] == 0
        assert first.in_memory
    finally:
        first.close()
        second.close()


def test_pooled_connections_share_memory_database(db):
    db.execute_update("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("rashtrackr-v1", 1.0))
    conns = [db.get_connection() for _ in range(3)]
    try:
        for conn in conns:
            assert conn.execute("SELECT COUNT(*) FROM cache_stores").fetchone()[0] == 1
    finally:
        for conn in conns:
            db.return_connection(conn)


def test_connection_pooling(db):
    conns = [db.get_connection() for _ in range(7)]
    for c in conns:
        db.return_connection(c)
    assert len(db._pool) <= db._max_pool_size


def test_execute_many_is_atomic(db):
    with pytest.raises(sqlite3.IntegrityError):
        db.execute_many(
            [
                ("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("a", 1.0)),
                ("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("a", 2.0)),
            ]
        )
    assert db.execute_query("SELECT COUNT(*) FROM cache_stores")[0][0] == 0


def test_execute_many_commits(db):
    total = db.execute_many(
        [
            ("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("a", 1.0)),
            ("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("b", 2.0)),
        ]
    )
    assert total == 2
    rows = db.execute_query("SELECT name FROM cache_stores ORDER BY created_at")
    assert [r[0] for r in rows] == ["a", "b"]


def test_thread_safety(db):
    results = []

    def worker(i):
        db.execute_update(
            "INSERT INTO deferred_writes (id, payload, token, created_at) VALUES (?, ?, ?, ?)",
            (f"item-{i}", "{}", None, float(i)),
        )
        results.append(True)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(results) == 10
    assert db.execute_query("SELECT COUNT(*) FROM deferred_writes")[0][0] == 10


def test_file_database_persists(tmp_path):
    path = str(tmp_path / "offline.db")
    dbm = DatabaseManager(path)
    assert not dbm.in_memory
    dbm.execute_update("INSERT INTO cache_stores (name, created_at) VALUES (?, ?)", ("rashtrackr-v1", 1.0))
    dbm.close()

    reopened = DatabaseManager(path)
    try:
        assert reopened.execute_query("SELECT name FROM cache_stores")[0][0] == "rashtrackr-v1"
    finally:
        reopened.close()
