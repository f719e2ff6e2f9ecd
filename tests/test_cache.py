from __future__ import annotations

import threading

import pytest

from chapterflow import cache as cache_module
from chapterflow.cache import ChapterCache

from conftest import wait_until


class _Loader:
    def __init__(self) -> None:
        self.calls: list[int] = []
        self.gates: dict[int, threading.Event] = {}
        self.started: dict[int, threading.Event] = {}
        self.failing: set[int] = set()
        self._lock = threading.Lock()

    def gate(self, index: int) -> threading.Event:
        self.gates[index] = threading.Event()
        self.started[index] = threading.Event()
        return self.gates[index]

    def __call__(self, index: int) -> str:
        with self._lock:
            self.calls.append(index)
        if index in self.started:
            self.started[index].set()
        gate = self.gates.get(index)
        if gate is not None:
            gate.wait(timeout=5)
        if index in self.failing:
            raise RuntimeError(f"chapter {index} unavailable")
        return f"text-{index}"


@pytest.fixture
def loader() -> _Loader:
    return _Loader()


@pytest.fixture
def cache(loader: _Loader):
    instance = ChapterCache(loader, max_workers=4)
    yield instance
    instance.shutdown()


def test_request_loads_and_stores(cache: ChapterCache, loader: _Loader) -> None:
    assert cache.request(3).result(timeout=2) == "text-3"
    assert cache.get(3) == "text-3"
    assert 3 in cache
    hit = cache.request(3)
    assert hit.done()
    assert hit.result() == "text-3"
    assert loader.calls == [3]


def test_concurrent_requests_share_one_load(cache: ChapterCache, loader: _Loader) -> None:
    gate = loader.gate(1)
    first = cache.request(1)
    second = cache.request(1)
    assert first is second
    assert cache.in_flight() == {1}
    gate.set()
    assert first.result(timeout=2) == "text-1"
    assert loader.calls == [1]
    assert cache.in_flight() == set()


def test_foreground_request_does_not_wait_for_busy_preloads(loader: _Loader) -> None:
    small = ChapterCache(loader, max_workers=1)
    gate = loader.gate(1)
    try:
        preload = small.request(1)
        assert loader.started[1].wait(timeout=2)
        assert small.request(4, foreground=True).result(timeout=1) == "text-4"
        assert small.request(1, foreground=True) is preload
    finally:
        gate.set()
        small.shutdown()


def test_reconcile_window_evicts_outside_entries(cache: ChapterCache) -> None:
    for idx in range(6):
        assert cache.put(idx, f"text-{idx}")
    evicted = cache.reconcile_window(3, 10, ahead_count=1, behind_count=1)
    assert evicted == [0, 1, 5]
    assert cache.indices() == [2, 3, 4]
    assert cache.window == (2, 4)


def test_window_is_clamped_to_book(cache: ChapterCache) -> None:
    cache.reconcile_window(0, 2, ahead_count=5, behind_count=3)
    assert cache.window == (0, 2)


def test_put_outside_window_is_rejected(cache: ChapterCache) -> None:
    cache.reconcile_window(5, 20, ahead_count=2, behind_count=1)
    assert not cache.put(1, "stale")
    assert cache.put(6, "fresh")
    assert cache.indices() == [6]


def test_late_result_outside_window_is_dropped(cache: ChapterCache, loader: _Loader) -> None:
    gate = loader.gate(8)
    cache.reconcile_window(7, 20, ahead_count=2, behind_count=1)
    future = cache.request(8)
    assert loader.started[8].wait(timeout=2)
    cache.reconcile_window(0, 20, ahead_count=2, behind_count=1)
    gate.set()
    assert future.result(timeout=2) == "text-8"
    assert 8 not in cache
    assert len(cache) <= 4


def test_size_never_exceeds_window(cache: ChapterCache) -> None:
    ahead, behind = 2, 1
    for current in range(10):
        cache.reconcile_window(current, 9, ahead, behind)
        for idx in range(current - behind, current + ahead + 1):
            if idx >= 0:
                cache.request(idx).result(timeout=2)
        assert len(cache) <= ahead + behind + 1


def test_failed_load_leaves_slot_empty(cache: ChapterCache, loader: _Loader) -> None:
    loader.failing.add(2)
    with pytest.raises(RuntimeError):
        cache.request(2).result(timeout=2)
    assert 2 not in cache
    assert cache.in_flight() == set()
    loader.failing.clear()
    assert cache.request(2).result(timeout=2) == "text-2"


def test_schedule_preload_skips_loaded_and_stops_at_book_end(cache: ChapterCache, loader: _Loader) -> None:
    cache.put(4, "text-4")
    futures = cache.schedule_preload(3, ahead_count=3, last_chapter_index=5)
    for future in futures:
        future.result(timeout=2)
    assert sorted(loader.calls) == [5]
    assert cache.indices() == [4, 5]


def test_preload_failure_is_logged(cache: ChapterCache, loader: _Loader, monkeypatch) -> None:
    messages: list[str] = []
    monkeypatch.setattr(cache_module, "warn_log", messages.append)
    loader.failing.add(1)
    futures = cache.schedule_preload(0, ahead_count=1)
    assert len(futures) == 1
    assert wait_until(lambda: bool(messages))
    assert "chapter 1" in messages[0]
    assert 1 not in cache


def test_clear_drops_entries_and_window(cache: ChapterCache) -> None:
    cache.reconcile_window(1, 5, 1, 1)
    cache.put(1, "x")
    cache.clear()
    assert len(cache) == 0
    assert cache.window is None
