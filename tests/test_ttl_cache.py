"""
tests/test_ttl_cache.py

Pytest unit tests for the in-process TTL cache, driven by a fake clock.
"""

from __future__ import annotations

import pytest

from app.caching import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def test_entries_expire_after_ttl(clock: FakeClock) -> None:
    cache: TTLCache[str] = TTLCache(60, 10, clock=clock)
    cache.set("k", "v")

    clock.advance(59.9)
    assert cache.get("k") == "v"

    clock.advance(0.1)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_get_or_compute_caches_within_ttl(clock: FakeClock) -> None:
    cache: TTLCache[int] = TTLCache(30, 10, clock=clock)
    calls: list[int] = []

    def compute() -> int:
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("x", compute) == 1
    assert cache.get_or_compute("x", compute) == 1
    clock.advance(31)
    assert cache.get_or_compute("x", compute) == 2


def test_failed_compute_is_not_cached(clock: FakeClock) -> None:
    cache: TTLCache[int] = TTLCache(30, 10, clock=clock)

    def failing() -> int:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("x", failing)
    assert cache.get_or_compute("x", lambda: 7) == 7


def test_capacity_evicts_oldest_insertions(clock: FakeClock) -> None:
    cache: TTLCache[int] = TTLCache(60, 2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_set_prunes_expired_entries_first(clock: FakeClock) -> None:
    cache: TTLCache[int] = TTLCache(10, 2, clock=clock)
    cache.set("old", 1)
    clock.advance(11)
    cache.set("new", 2)

    assert len(cache) == 1


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TTLCache(0, 10)
