"""Unit tests for CacheStorage and CacheStore."""

import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import pytest

from rashtrackr_offline.cache.storage import CacheStorage, CacheStore, generate_cache_key
from rashtrackr_offline.core.errors import InstallError, NetworkUnavailable
from rashtrackr_offline.database.manager import DatabaseManager
from rashtrackr_offline.database.models import Request, Response

ORIGIN = "https://rashtrackr.example"


@pytest.fixture
def storage():
    db = DatabaseManager(":memory:")
    yield CacheStorage(db, max_response_size=4096, compression_threshold=64)
    db.close()


def test_cache_key_is_exact():
    assert generate_cache_key("GET", f"{ORIGIN}/a") == generate_cache_key("get", f"{ORIGIN}/a")
    assert generate_cache_key("GET", f"{ORIGIN}/a") != generate_cache_key("GET", f"{ORIGIN}/a?")
    assert generate_cache_key("GET", f"{ORIGIN}/a") != generate_cache_key("POST", f"{ORIGIN}/a")


def test_put_and_match(storage):
    store = storage.open("rashtrackr-v1")
    req = Request(f"{ORIGIN}/static/js/bundle.js")
    assert store.put(req, Response(b"console.log(1)", headers={"Content-Type": "text/javascript"}))

    cached = store.match(Request(f"{ORIGIN}/static/js/bundle.js"))
    assert cached.body == b"console.log(1)"
    assert cached.status == 200
    assert cached.header("content-type") == "text/javascript"
    assert cached.response_type == "basic"
    assert store.match(Request(f"{ORIGIN}/other.js")) is None


def test_put_overwrites_in_place(storage):
    store = storage.open("rashtrackr-v1")
    req = Request(f"{ORIGIN}/manifest.json")
    store.put(req, Response(b"old"))
    store.put(req, Response(b"new"))
    assert store.count() == 1
    assert store.match(req).body == b"new"


def test_large_bodies_are_compressed_transparently(storage):
    store = storage.open("rashtrackr-v1")
    req = Request(f"{ORIGIN}/static/css/main.css")
    body = b"body { color: red; }\n" * 100
    store.put(req, Response(body))
    row = storage.db_manager.execute_query("SELECT compressed, length(body) FROM cache_entries")[0]
    assert row[0] == 1
    assert row[1] < len(body)
    assert store.match(req).body == body


def test_oversized_response_not_stored(storage):
    store = storage.open("rashtrackr-v1")
    req = Request(f"{ORIGIN}/logo512.png")
    assert store.put(req, Response(os.urandom(5000))) is False
    assert store.match(req) is None


def test_only_get_is_stored_or_matched(storage):
    store = storage.open("rashtrackr-v1")
    with pytest.raises(ValueError):
        store.put(Request(f"{ORIGIN}/api/reports", method="POST"), Response(b"{}"))
    store.put(Request(f"{ORIGIN}/api/reports"), Response(b"[]"))
    assert store.match(Request(f"{ORIGIN}/api/reports", method="POST")) is None


def test_stores_are_isolated(storage):
    v1 = storage.open("rashtrackr-v1")
    v2 = storage.open("rashtrackr-v2")
    req = Request(f"{ORIGIN}/")
    v1.put(req, Response(b"v1 shell"))
    assert v2.match(req) is None
    assert storage.match(req).body == b"v1 shell"
    assert storage.match(req, cache_name="rashtrackr-v2") is None


def test_keys_and_delete(storage):
    storage.open("rashtrackr-v1").put(Request(f"{ORIGIN}/"), Response(b"x"))
    storage.open("rashtrackr-v2")
    assert storage.keys() == ["rashtrackr-v1", "rashtrackr-v2"]
    assert storage.has("rashtrackr-v1")

    assert storage.delete("rashtrackr-v1") is True
    assert storage.keys() == ["rashtrackr-v2"]
    assert storage.db_manager.execute_query("SELECT COUNT(*) FROM cache_entries")[0][0] == 0
    assert storage.delete("rashtrackr-v1") is False
    assert storage.get_stats()["stores_deleted"] == 1


def test_open_is_idempotent(storage):
    store = storage.open("rashtrackr-v1")
    store.put(Request(f"{ORIGIN}/"), Response(b"x"))
    again = storage.open("rashtrackr-v1")
    assert again.count() == 1
    assert storage.keys() == ["rashtrackr-v1"]


def test_entry_counts(storage):
    storage.open("rashtrackr-v1").put(Request(f"{ORIGIN}/a"), Response(b"a"))
    storage.open("rashtrackr-v1").put(Request(f"{ORIGIN}/b"), Response(b"b"))
    storage.open("rashtrackr-v2")
    assert storage.entry_counts() == {"rashtrackr-v1": 2, "rashtrackr-v2": 0}


def test_hit_and_miss_stats(storage):
    store = storage.open("rashtrackr-v1")
    store.put(Request(f"{ORIGIN}/a"), Response(b"a"))
    store.match(Request(f"{ORIGIN}/a"))
    store.match(Request(f"{ORIGIN}/b"))
    stats = storage.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["puts"] == 1


def _fetcher(failing=()):
    def fetch(request):
        path = request.url[len(ORIGIN) :]
        if path in failing:
            raise NetworkUnavailable(request.url, "connection refused")
        if path == "/missing.png":
            return Response(b"", status=404, status_text="Not Found")
        return Response(f"asset {path}".encode())

    return fetch


def test_add_all_strict_success(storage):
    store = storage.open("rashtrackr-v1")
    requests = [Request(f"{ORIGIN}{p}") for p in ("/", "/manifest.json", "/favicon.ico")]
    cached, failed = store.add_all(requests, _fetcher(), strict=True)
    assert len(cached) == 3
    assert failed == []
    assert store.match(Request(f"{ORIGIN}/manifest.json")).body == b"asset /manifest.json"


def test_add_all_strict_stores_nothing_on_failure(storage):
    store = storage.open("rashtrackr-v1")
    requests = [Request(f"{ORIGIN}{p}") for p in ("/", "/logo192.png", "/manifest.json")]
    with pytest.raises(InstallError) as exc_info:
        store.add_all(requests, _fetcher(failing=("/logo192.png",)), strict=True)
    assert exc_info.value.failed == [f"{ORIGIN}/logo192.png"]
    assert store.count() == 0


def test_add_all_strict_treats_http_error_as_failure(storage):
    store = storage.open("rashtrackr-v1")
    with pytest.raises(InstallError):
        store.add_all([Request(f"{ORIGIN}/"), Request(f"{ORIGIN}/missing.png")], _fetcher(), strict=True)
    assert store.count() == 0


def test_add_all_best_effort_stores_what_succeeded(storage):
    store = storage.open("rashtrackr-v1")
    requests = [Request(f"{ORIGIN}{p}") for p in ("/", "/logo192.png", "/missing.png")]
    cached, failed = store.add_all(requests, _fetcher(failing=("/logo192.png",)), strict=False)
    assert cached == [f"{ORIGIN}/"]
    assert sorted(failed) == [f"{ORIGIN}/logo192.png", f"{ORIGIN}/missing.png"]
    assert store.keys() == [f"{ORIGIN}/"]


def test_cache_store_delete_single_entry(storage):
    store = storage.open("rashtrackr-v1")
    store.put(Request(f"{ORIGIN}/a"), Response(b"a"))
    assert store.delete(Request(f"{ORIGIN}/a"))
    assert not store.delete(Request(f"{ORIGIN}/a"))
    assert isinstance(store, CacheStore)
