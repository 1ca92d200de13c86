"""
Tests for bmc/sync_pool.py
"""

import threading
import time

import pytest

from bmc.models import LockCategory
from bmc.sync_pool import EndpointMutexRegistry


class TestEndpointMutexRegistry:
    """Tests for per-(endpoint, category) locking."""

    def test_same_key_is_exclusive(self, registry):
        """Critical sections on one key must never overlap."""
        active = []
        overlaps = []

        def worker():
            with registry.hold("https://bmc-a", LockCategory.STORAGE_VOLUME):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(1)
                time.sleep(0.005)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert overlaps == []

    @pytest.mark.parametrize("first,second", [
        (("https://bmc-a", "storage_volume"), ("https://bmc-b", "storage_volume")),
        (("https://bmc-a", "storage_volume"), ("https://bmc-a", "reset")),
    ])
    def test_distinct_keys_do_not_block(self, registry, first, second):
        """Different endpoints or categories should proceed concurrently."""
        barrier = threading.Barrier(2, timeout=2)
        results = []

        def worker(key):
            with registry.hold(*key):
                try:
                    barrier.wait()
                    results.append(True)
                except threading.BrokenBarrierError:
                    results.append(False)

        threads = [threading.Thread(target=worker, args=(k,)) for k in (first, second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert results == [True, True]

    def test_category_enum_and_string_share_key(self, registry):
        registry.acquire("https://bmc-a", LockCategory.RESET)
        assert registry.is_held("https://bmc-a", "reset")
        registry.release("https://bmc-a", "reset")
        assert not registry.is_held("https://bmc-a", LockCategory.RESET)

    def test_release_unheld_key_raises(self, registry):
        with pytest.raises(RuntimeError):
            registry.release("https://bmc-a", LockCategory.ATTRIBUTES)

    def test_hold_releases_on_exception(self, registry):
        with pytest.raises(ValueError):
            with registry.hold("https://bmc-a", LockCategory.VIRTUAL_MEDIA):
                raise ValueError("failure inside critical section")
        assert not registry.is_held("https://bmc-a", LockCategory.VIRTUAL_MEDIA)

    def test_registries_are_independent(self):
        one, two = EndpointMutexRegistry(), EndpointMutexRegistry()
        one.acquire("https://bmc-a", "reset")
        assert not two.is_held("https://bmc-a", "reset")
        one.release("https://bmc-a", "reset")

    def test_release_from_other_thread_raises(self, registry):
        """A key held by one thread should not be releasable by another"""
        acquired = threading.Event()
        finish = threading.Event()

        def holder():
            registry.acquire("https://bmc-a", LockCategory.STORAGE_VOLUME)
            acquired.set()
            finish.wait(timeout=5)
            registry.release("https://bmc-a", LockCategory.STORAGE_VOLUME)

        thread = threading.Thread(target=holder)
        thread.start()
        assert acquired.wait(timeout=5)
        try:
            with pytest.raises(RuntimeError, match="another thread"):
                registry.release("https://bmc-a", LockCategory.STORAGE_VOLUME)
            assert registry.is_held("https://bmc-a", LockCategory.STORAGE_VOLUME)
        finally:
            finish.set()
            thread.join(timeout=5)
        assert not registry.is_held("https://bmc-a", LockCategory.STORAGE_VOLUME)
