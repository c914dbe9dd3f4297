import threading

import pytest

from spotifier.core.errors import CacheReadError, CacheWriteError
from spotifier.workflows import spot_utils
from spotifier.workflows.cache import CacheBackend, FileCache, MemoryCache, namespace_dirname


def test_set_then_get_returns_latest_payload(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"v1")
    cache.set("default", "courses", b"v2")
    assert cache.get("default", "courses") == b"v2"


def test_get_unknown_key_is_a_miss(tmp_path):
    cache = FileCache(tmp_path / "never-created")
    assert cache.get("default", "courses") is None


def test_failed_rename_keeps_previous_entry_and_no_temp_file(tmp_path, monkeypatch):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"v1")

    def boom(src, dst):
        raise OSError("disk went away")

    monkeypatch.setattr(spot_utils.os, "replace", boom)
    with pytest.raises(CacheWriteError):
        cache.set("default", "courses", b"v2")
    monkeypatch.undo()

    assert cache.get("default", "courses") == b"v1"
    leftovers = [p.name for p in cache.entry_path("default", "courses").parent.iterdir()]
    assert leftovers == [cache.entry_path("default", "courses").name]


def test_stray_temp_file_is_ignored(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"v1")
    entry = cache.entry_path("default", "courses")
    (entry.parent / f".{entry.name}.abc123.tmp").write_bytes(b"half-written garbage")
    assert cache.get("default", "courses") == b"v1"


def test_corrupt_header_is_a_read_error_not_a_miss(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"v1")
    cache.entry_path("default", "courses").write_bytes(b"{not json\nbody")
    with pytest.raises(CacheReadError):
        cache.get("default", "courses")


def test_truncated_body_is_a_read_error(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"0123456789")
    path = cache.entry_path("default", "courses")
    path.write_bytes(path.read_bytes()[:-3])
    with pytest.raises(CacheReadError):
        cache.get("default", "courses")


def test_unreadable_entry_is_a_read_error(tmp_path):
    cache = FileCache(tmp_path)
    cache.entry_path("default", "courses").mkdir(parents=True)
    with pytest.raises(CacheReadError):
        cache.get("default", "courses")


def test_invalidate_is_idempotent(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("default", "courses", b"v1")
    cache.invalidate("default", "courses")
    cache.invalidate("default", "courses")
    cache.invalidate("default", "never-written")
    assert cache.get("default", "courses") is None


def test_namespaces_are_isolated(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("alice", "courses", b"a")
    cache.set("bob", "courses", b"b")
    cache.invalidate("alice", "courses")
    assert cache.get("alice", "courses") is None
    assert cache.get("bob", "courses") == b"b"


def test_namespace_cannot_escape_the_root(tmp_path):
    root = tmp_path / "cache"
    cache = FileCache(root)
    cache.set("../../etc", "k", b"x")
    assert cache.entry_path("../../etc", "k").resolve().is_relative_to(root.resolve())
    assert namespace_dirname("Alice") != namespace_dirname("alice")
    assert "/" not in namespace_dirname("a/b")


def test_max_age_turns_old_entries_into_misses(tmp_path):
    now = [1000.0]
    cache = FileCache(tmp_path, max_age=60, clock=lambda: now[0])
    cache.set("default", "courses", b"v1")
    now[0] += 59
    assert cache.get("default", "courses") == b"v1"
    now[0] += 2
    assert cache.get("default", "courses") is None
    assert cache.read_entry("default", "courses").payload == b"v1"


def test_non_bytes_payload_is_rejected(tmp_path):
    with pytest.raises(TypeError):
        FileCache(tmp_path).set("default", "courses", "text")


def test_concurrent_writers_never_tear_entries(tmp_path):
    cache = FileCache(tmp_path)
    payloads = [bytes([i]) * 4096 for i in range(8)]

    def writer(i):
        for _ in range(10):
            cache.set("default", f"key-{i}", payloads[i])
            cache.set("default", "shared", payloads[i])

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for i in range(8):
        assert cache.get("default", f"key-{i}") == payloads[i]
    assert cache.get("default", "shared") in payloads


def test_memory_cache_matches_the_contract():
    now = [0.0]
    cache = MemoryCache(max_age=10, clock=lambda: now[0])
    assert isinstance(cache, CacheBackend)
    assert cache.get("default", "courses") is None
    cache.set("default", "courses", b"v1")
    cache.set("other", "courses", b"o1")
    assert cache.get("default", "courses") == b"v1"
    now[0] = 11
    assert cache.get("default", "courses") is None
    cache.invalidate("other", "courses")
    cache.invalidate("other", "courses")
    assert cache.get("other", "courses") is None


def test_file_cache_is_a_backend(tmp_path):
    assert isinstance(FileCache(tmp_path), CacheBackend)
