"""Tests for the TTL-based snapshot cache."""

import time

from bustrack.data.cache import TTLCache


def test_cache_ttl_expiration():
    """Cache should return None after TTL expires."""
    # Use a very short TTL for testing
    cache: TTLCache[str] = TTLCache(ttl=0.1)

    cache.set("test_value")
    assert cache.get() == "test_value"

    # Wait for TTL to expire
    time.sleep(0.15)

    assert cache.get() is None


def test_cache_uses_injected_clock():
    """Expiry follows the clock the cache was given."""
    now = [100.0]
    cache: TTLCache[str] = TTLCache(ttl=3.0, clock=lambda: now[0])

    cache.set("snapshot")
    now[0] = 102.9
    assert cache.get() == "snapshot"
    now[0] = 103.0
    assert cache.get() is None


def test_cache_returns_value_before_expiration():
    """Cache should return value before TTL expires."""
    cache: TTLCache[str] = TTLCache(ttl=10.0)

    cache.set("test_value")
    assert cache.get() == "test_value"
    assert cache.ttl == 10.0


def test_cache_clear():
    """Cache clear should remove the value."""
    cache: TTLCache[str] = TTLCache(ttl=10.0)

    cache.set("test_value")
    cache.clear()
    assert cache.get() is None


def test_cache_overwrite():
    """Setting a new value should overwrite the old one."""
    cache: TTLCache[str] = TTLCache(ttl=10.0)

    cache.set("first")
    assert cache.get() == "first"

    cache.set("second")
    assert cache.get() == "second"
