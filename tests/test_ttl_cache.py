"""Tests for the in-process TTL cache used for version listings."""
import time
from unittest.mock import patch

from common.ttl_cache import TTLCache


def test_get_set():
    cache = TTLCache(default_ttl=60)
    assert cache.get("k") is None
    cache.set("k", (1, 2))
    assert cache.get("k") == (1, 2)


def test_expiry():
    cache = TTLCache(default_ttl=60)
    now = time.time()
    with patch("common.ttl_cache.time.time", return_value=now):
        cache.set("k", "v", ttl=5)
    with patch("common.ttl_cache.time.time", return_value=now + 10):
        assert cache.get("k") is None
    assert cache.stats()["total_entries"] == 0


def test_eviction_keeps_newest():
    cache = TTLCache(default_ttl=60, max_entries=10)
    for i in range(11):
        cache.set(i, i)
    assert cache.get(0) is None
    assert cache.get(10) == 10
