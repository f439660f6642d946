"""Tests for BoundedTTLCache: capacity, LRU eviction and clock-driven expiry."""

import pytest

from sourcing_kernel.utils.bounded_cache import BoundedTTLCache


@pytest.fixture
def cache(deterministic_clock):
    return BoundedTTLCache(capacity=2, ttl_seconds=60, clock=deterministic_clock)


class TestCapacity:

    def test_evicts_least_recently_used(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1  # "b" is now least recently used
        cache.put("c", 3)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_put_replaces_value(self, cache):
        cache.put("a", 1)
        cache.put("a", 2)
        assert cache.get("a") == 2
        assert len(cache) == 1

    @pytest.mark.parametrize("capacity,ttl", [(0, 60), (1, 0)])
    def test_rejects_bad_limits(self, capacity, ttl):
        with pytest.raises(ValueError):
            BoundedTTLCache(capacity=capacity, ttl_seconds=ttl)


class TestExpiry:

    def test_entry_expires_at_ttl(self, cache, deterministic_clock):
        cache.put("a", 1)
        deterministic_clock.advance(59)
        assert cache.get("a") == 1

        deterministic_clock.advance(1)
        assert cache.get("a") is None
        assert cache.get("a", "gone") == "gone"
        assert len(cache) == 0

    def test_purge_expired(self, cache, deterministic_clock):
        cache.put("old", 1)
        deterministic_clock.advance(30)
        cache.put("new", 2)
        deterministic_clock.advance(30)

        assert cache.purge_expired() == 1
        assert cache.get("new") == 2
        assert len(cache) == 1


class TestRemoval:

    def test_pop_and_clear(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)

        assert cache.pop("a") == 1
        assert cache.pop("a") is None
        cache.clear()
        assert len(cache) == 0
