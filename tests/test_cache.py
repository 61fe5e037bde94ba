"""
wgbridge TTL Cache Tests
"""

import pytest

from wgbridge.core.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_set(self):
        """Test storing and reading a value."""
        cache = TTLCache(ttl=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert "a" in cache
        assert len(cache) == 1

    def test_expiry(self):
        """Test that entries expire after the TTL."""
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("a", 1)

        clock.now += 9.9
        assert cache.get("a") == 1

        clock.now += 0.1
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_falsy_values_are_cached(self):
        """Test that falsy values are cached like any other."""
        cache = TTLCache(ttl=10)
        cache.set("zero", 0)
        cache.set("no", False)
        assert cache.get("zero") == 0
        assert cache.get("no") is False

    def test_capacity_evicts_oldest_inserted(self):
        """Test eviction of the oldest inserted key at capacity."""
        cache = TTLCache(ttl=10, max_size=3)
        for i in range(5):
            cache.set(f"k{i}", i)

        assert len(cache) == 3
        assert cache.get("k0") is None
        assert cache.get("k1") is None
        assert [cache.get(f"k{i}") for i in (2, 3, 4)] == [2, 3, 4]
        assert cache.evictions == 2

    def test_reads_do_not_change_eviction_order(self):
        """Test that reads do not reorder eviction."""
        cache = TTLCache(ttl=10, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_overwrite_does_not_evict(self):
        """Test overwriting an existing key at capacity."""
        cache = TTLCache(ttl=10, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert len(cache) == 2
        assert cache.get("a") == 10
        assert cache.evictions == 0

    def test_clear_and_delete(self):
        """Test clearing and deleting entries."""
        cache = TTLCache(ttl=10)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.clear() == 1
        assert len(cache) == 0

    @pytest.mark.parametrize("ttl,max_size", [(0, None), (-1, None), (10, 0)])
    def test_invalid_parameters(self, ttl, max_size):
        """Test rejection of invalid TTL and size."""
        with pytest.raises(ValueError):
            TTLCache(ttl=ttl, max_size=max_size)
