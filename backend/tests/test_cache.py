from __future__ import annotations

import pytest

from backend.cache import CacheBackend, ResponseCache, make_cache_key


def test_get_returns_payload_until_ttl_elapses(cache: ResponseCache, clock) -> None:
    cache.set("orders", ["a"], ttl=60)
    assert cache.get("orders") == ["a"]

    clock.advance(59.9)
    assert cache.get("orders") == ["a"]

    clock.advance(0.1)
    assert cache.get("orders") is None


def test_expired_entry_is_evicted_on_read(cache: ResponseCache, clock) -> None:
    cache.set("orders", {"page": 1})
    clock.advance(300)
    assert len(cache) == 1
    assert "orders" not in cache
    assert cache.get("orders") is None
    assert len(cache) == 0


def test_default_ttl_applies_when_none_given(clock) -> None:
    cache = ResponseCache(default_ttl=10, clock=clock)
    cache.set("k", 1)
    clock.advance(9)
    assert cache.get("k") == 1
    clock.advance(1)
    assert cache.get("k") is None


def test_cache_key_ignores_parameter_order() -> None:
    first = make_cache_key("orders-page", {"page": 1, "per_page": 500, "with_items": "false"})
    second = make_cache_key("orders-page", {"with_items": "false", "per_page": 500, "page": 1})
    assert first == second


def test_cache_key_separates_distinct_requests() -> None:
    assert make_cache_key("orders", {"a": "1_b"}) != make_cache_key("orders", {"a": "1", "b": ""})
    assert make_cache_key("orders", {"page": 1}) != make_cache_key("orders", {"page": "1"})
    assert make_cache_key("orders-page", {"page": 1}) != make_cache_key("orders-batch", {"page": 1})


def test_full_cache_evicts_oldest_entry(clock) -> None:
    cache = ResponseCache(default_ttl=60, max_entries=2, clock=clock)
    cache.set("first", 1)
    cache.set("second", 2)
    cache.set("third", 3)

    assert cache.get("first") is None
    assert cache.get("second") == 2
    assert cache.get("third") == 3
    assert cache.stats().keys == ["second", "third"]


def test_full_cache_drops_expired_entries_before_valid_ones(clock) -> None:
    cache = ResponseCache(default_ttl=60, max_entries=2, clock=clock)
    cache.set("oldest", 1)
    cache.set("stale", 2, ttl=5)
    clock.advance(10)

    cache.set("newest", 3)

    assert cache.stats().keys == ["oldest", "newest"]
    assert cache.get("oldest") == 1


def test_invalidate_all_empties_cache(cache: ResponseCache) -> None:
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate_all()

    stats = cache.stats()
    assert stats.size == 0
    assert stats.keys == []
    assert cache.get("a") is None


def test_invalidate_single_key(cache: ResponseCache) -> None:
    cache.set("a", 1)
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False


def test_purge_expired_only_drops_stale_entries(cache: ResponseCache, clock) -> None:
    cache.set("short", 1, ttl=10)
    cache.set("long", 2, ttl=600)
    clock.advance(20)

    assert cache.purge_expired() == 1
    assert cache.stats().keys == ["long"]


def test_falsy_payloads_are_cached(cache: ResponseCache) -> None:
    cache.set("empty", [])
    assert cache.get("empty") == []


@pytest.mark.parametrize("ttl", [0, -5])
def test_non_positive_ttl_rejected(cache: ResponseCache, ttl: float) -> None:
    with pytest.raises(ValueError):
        cache.set("k", 1, ttl=ttl)


def test_response_cache_satisfies_backend_protocol(cache: ResponseCache) -> None:
    assert isinstance(cache, CacheBackend)
