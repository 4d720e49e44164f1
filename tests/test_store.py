"""Tests for the cache and trigger stores."""

import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from prostagma.errors import NotFoundError
from prostagma.store import CacheStore, TriggerStore


@pytest.fixture
def store(tmp_path):
    s = CacheStore(str(tmp_path / "cache"))
    s.reset()
    return s


def _write(path, data: bytes):
    with open(path, "wb") as f:
        f.write(data)


def test_reset_creates_and_wipes_directory(tmp_path):
    """reset() empties an existing cache directory."""
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    (cache_dir / "leftover").write_bytes(b"old")

    s = CacheStore(str(cache_dir))
    s.reset()

    assert cache_dir.is_dir()
    assert list(cache_dir.iterdir()) == []
    assert len(s) == 0


def test_new_file_is_inside_cache_dir(store):
    """Fresh cache files are unique and live in the cache directory."""
    a, b = store.new_file(), store.new_file()
    assert a != b
    assert os.path.dirname(a) == store.cache_dir
    assert os.path.exists(a) and os.path.exists(b)


def test_publish_then_open_returns_bytes(store):
    path = store.new_file()
    _write(path, b"payload")
    store.publish("http://x/a", path)

    assert store.get("http://x/a") == path
    with store.open("http://x/a") as f:
        assert f.read() == b"payload"


def test_open_unknown_url_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.open("http://x/missing")


def test_publish_deletes_superseded_file(store):
    """Re-caching a URL removes the previous backing file."""
    first = store.new_file()
    _write(first, b"v1")
    store.publish("http://x/a", first)

    second = store.new_file()
    _write(second, b"v2")
    store.publish("http://x/a", second)

    assert not os.path.exists(first)
    assert store.get("http://x/a") == second
    assert len(store) == 1


def test_open_handle_survives_supersede(store):
    """A reader that already opened the file keeps reading the old content."""
    first = store.new_file()
    _write(first, b"old content")
    store.publish("http://x/a", first)

    f = store.open("http://x/a")
    second = store.new_file()
    _write(second, b"new content")
    store.publish("http://x/a", second)

    with f:
        assert f.read() == b"old content"


def test_discard_ignores_missing_file(store):
    path = store.new_file()
    store.discard(path)
    store.discard(path)
    assert not os.path.exists(path)


def test_trigger_get_unseen_is_zero_and_registered():
    t = TriggerStore()
    assert t.get("build") == 0
    assert t.snapshot() == {"build": 0}


def test_trigger_increment_counts_up():
    t = TriggerStore()
    assert t.increment("build") == 1
    assert t.increment("build") == 2
    assert t.get("build") == 2
    assert t.get("other") == 0


def test_concurrent_increments_are_not_lost():
    """N concurrent increments yield exactly N."""
    t = TriggerStore()
    n = 500

    def _bump(_):
        t.increment("build")

    with ThreadPoolExecutor(max_workers=100) as pool:
        list(pool.map(_bump, range(n)))

    assert t.get("build") == n


def test_concurrent_publish_keeps_one_file_per_url(store):
    """Racing publishers for one URL leave exactly one mapping and one file."""
    def _publish(i):
        path = store.new_file()
        _write(path, str(i).encode())
        store.publish("http://x/a", path)

    with ThreadPoolExecutor(max_workers=20) as pool:
        list(pool.map(_publish, range(100)))

    assert len(store) == 1
    assert os.listdir(store.cache_dir) == [os.path.basename(store.get("http://x/a"))]
