"""Tests for the response cache."""
import threading

import pytest

from app.pantbrev.cache import ResponseCache, make_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


class TestMakeKey:
    def test_params_order_does_not_matter(self):
        assert make_key("/api/x", {"b": 2, "a": 1}) == make_key("/api/x", {"a": 1, "b": 2})

    def test_none_params_are_dropped(self):
        assert make_key("/api/x", {"a": 1, "b": None}) == make_key("/api/x", {"a": 1})

    def test_scope_separates_users(self):
        assert make_key("/api/x", scope="u1") != make_key("/api/x", scope="u2")


class TestResponseCache:
    def test_fresh_entry_returned_without_calling_producer(self, clock):
        cache = ResponseCache(ttl_seconds=300, clock=clock)
        calls = []
        key = make_key("/api/mortgage-deeds")
        assert cache.get_or_fetch(key, lambda: calls.append(1) or "first") == "first"
        clock.now += 299
        assert cache.get_or_fetch(key, lambda: calls.append(1) or "second") == "first"
        assert len(calls) == 1

    def test_entry_older_than_ttl_is_not_returned(self, clock):
        cache = ResponseCache(ttl_seconds=300, clock=clock)
        key = make_key("/api/mortgage-deeds")
        cache.set(key, "old")
        clock.now += 300
        assert cache.get(key) is None
        assert cache.get_or_fetch(key, lambda: "new") == "new"

    def test_failures_are_not_cached(self, clock):
        cache = ResponseCache(clock=clock)
        key = make_key("/api/statistics/summary")

        def boom():
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError):
            cache.get_or_fetch(key, boom)
        assert len(cache) == 0

    def test_invalidate_by_prefix_across_scopes(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set(make_key("/api/mortgage-deeds", {"page": 1}, scope="u1"), 1)
        cache.set(make_key("/api/mortgage-deeds/5", scope="u2"), 2)
        cache.set(make_key("/api/housing-cooperatives", scope="u1"), 3)

        assert cache.invalidate("/api/mortgage-deeds") == 2
        assert len(cache) == 1
        assert cache.get(make_key("/api/housing-cooperatives", scope="u1")) == 3

    def test_last_write_wins(self, clock):
        cache = ResponseCache(clock=clock)
        key = make_key("/api/x")
        cache.set(key, "a")
        cache.set(key, "b")
        assert cache.get(key) == "b"

    def test_expired_entries_are_pruned_on_write(self, clock):
        cache = ResponseCache(ttl_seconds=300, clock=clock)
        cache.set(make_key("/api/mortgage-deeds", scope="u1:0"), "old generation")
        clock.now += 301
        cache.set(make_key("/api/mortgage-deeds", scope="u1:1"), "current")
        assert len(cache) == 1


class TestInvalidationRace:
    def test_read_in_flight_during_invalidation_is_not_written_back(self):
        cache = ResponseCache()
        key = make_key("/api/mortgage-deeds", scope="u1")
        started = threading.Event()
        release = threading.Event()
        results = []

        def slow_read():
            started.set()
            release.wait(5)
            return "CREATED"

        reader = threading.Thread(target=lambda: results.append(cache.get_or_fetch(key, slow_read)))
        reader.start()
        assert started.wait(5)
        cache.invalidate("/api/mortgage-deeds")
        release.set()
        reader.join(5)

        assert results == ["CREATED"]
        assert cache.get(key) is None
        assert cache.get_or_fetch(key, lambda: "PENDING_BORROWER_SIGNATURE") == "PENDING_BORROWER_SIGNATURE"

    def test_set_with_outdated_epoch_is_refused(self):
        cache = ResponseCache()
        epoch = cache.epoch
        cache.invalidate("/api/housing-cooperatives")
        assert cache.set(make_key("/api/housing-cooperatives"), "stale", epoch=epoch) is False
        assert len(cache) == 0
