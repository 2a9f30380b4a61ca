import threading

import pytest
from unittest.mock import Mock

from dronedesk.query_cache import JobKeys, QueryCache, ScheduleKeys, freeze_params


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCacheKeys:
    def test_hierarchy(self):
        assert ScheduleKeys.detail("s-1") == ("schedules", "detail", "s-1")
        assert ScheduleKeys.by_job("j-1") == ("schedules", "byJob", "j-1")
        assert ScheduleKeys.availability("a", "b") == ("schedules", "availability", "a", "b")
        assert JobKeys.detail("j-1") == ("jobs", "detail", "j-1")

    def test_params_order_independent(self):
        assert freeze_params({"page": 1, "jobId": "j"}) == freeze_params({"jobId": "j", "page": 1})
        assert freeze_params({"page": 1, "status": None}) == (("page", 1),)
        assert ScheduleKeys.list({"page": 1}) != ScheduleKeys.list({"page": 2})


class TestQueryCache:
    def setup_method(self):
        self.clock = FakeClock()
        self.cache = QueryCache(clock=self.clock)

    def test_fetch_uses_loader_once(self):
        loader = Mock(return_value={"items": []})

        self.cache.fetch(ScheduleKeys.list(), loader, stale_time=60)
        self.cache.fetch(ScheduleKeys.list(), loader, stale_time=60)

        assert loader.call_count == 1

    def test_refetch_after_stale_time(self):
        loader = Mock(side_effect=["old", "new"])

        self.cache.fetch(ScheduleKeys.list(), loader, stale_time=60)
        self.clock.now += 61

        assert self.cache.fetch(ScheduleKeys.list(), loader, stale_time=60) == "new"

    def test_invalidate_marks_prefix_stale(self):
        self.cache.set(ScheduleKeys.list({"page": 1}), "a")
        self.cache.set(ScheduleKeys.list({"page": 2}), "b")
        self.cache.set(ScheduleKeys.detail("s-1"), "c")

        assert self.cache.invalidate(ScheduleKeys.lists()) == 2

        assert self.cache.is_stale(ScheduleKeys.list({"page": 1}))
        assert not self.cache.is_stale(ScheduleKeys.detail("s-1"))
        # stale data is still readable until the refetch lands
        assert self.cache.get(ScheduleKeys.list({"page": 2})) == "b"

    def test_failed_refetch_keeps_stale_value(self):
        self.cache.set(ScheduleKeys.detail("s-1"), "cached")
        self.cache.invalidate(ScheduleKeys.all)

        loader = Mock(side_effect=RuntimeError("offline"))
        with pytest.raises(RuntimeError):
            self.cache.fetch(ScheduleKeys.detail("s-1"), loader)

        assert self.cache.get(ScheduleKeys.detail("s-1")) == "cached"

    def test_remove_evicts(self):
        self.cache.set(ScheduleKeys.detail("s-1"), "c")
        self.cache.set(JobKeys.detail("j-1"), "j")

        assert self.cache.remove(ScheduleKeys.all) == 1
        assert not self.cache.has(ScheduleKeys.detail("s-1"))
        assert self.cache.keys() == [JobKeys.detail("j-1")]

    def test_set_clears_stale_flag(self):
        self.cache.set(ScheduleKeys.detail("s-1"), "c")
        self.cache.invalidate(ScheduleKeys.all)
        self.cache.set(ScheduleKeys.detail("s-1"), "d")

        assert not self.cache.is_stale(ScheduleKeys.detail("s-1"))

    def test_invalidation_during_load_leaves_result_stale(self):
        key = ScheduleKeys.list({"page": 1})
        self.cache.set(key, "pre-write")
        self.cache.invalidate(ScheduleKeys.lists())
        loading = threading.Event()
        release = threading.Event()

        def slow_loader():
            loading.set()
            assert release.wait(5)
            return "loaded-before-write"

        worker = threading.Thread(target=self.cache.fetch, args=(key, slow_loader, 120))
        worker.start()
        assert loading.wait(5)
        self.cache.invalidate(ScheduleKeys.lists())
        release.set()
        worker.join(5)

        assert self.cache.get(key) == "loaded-before-write"
        assert self.cache.is_stale(key, 120)

        fresh = Mock(return_value="post-write")
        assert self.cache.fetch(key, fresh, stale_time=120) == "post-write"
        fresh.assert_called_once()
        assert not self.cache.is_stale(key, 120)

    def test_load_without_concurrent_write_is_fresh(self):
        key = ScheduleKeys.detail("s-1")

        self.cache.fetch(key, Mock(return_value="s"), stale_time=120)

        assert not self.cache.is_stale(key, 120)
