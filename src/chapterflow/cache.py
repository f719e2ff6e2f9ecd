from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from .logging_utils import debug_log, warn_log


@dataclass(frozen=True)
class CacheEntry:
    chapter_index: int
    text: str
    inserted_at: int


class ChapterCache:
    """
    Window-bounded cache of normalized chapter text.

    ``loader(index)`` runs on a worker pool and must return the chapter's
    normalized text. At most one load per index is in flight; callers asking
    for an index that is already loading share the same future. Foreground
    requests run on their own pool and never queue behind preloads. Every
    mutation of the map happens under one lock, and a result only lands if the
    index is still inside the current window and no other result got there
    first.
    """

    def __init__(
        self,
        loader: Callable[[int], str],
        *,
        max_workers: int = 2,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._entries: dict[int, CacheEntry] = {}
        self._in_flight: dict[int, Future[str]] = {}
        self._counter = itertools.count()
        self._window: tuple[int, int] | None = None
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="chapterflow-fetch"
        )
        self._foreground = ThreadPoolExecutor(
            max_workers=max(2, max_workers), thread_name_prefix="chapterflow-foreground"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, index: object) -> bool:
        with self._lock:
            return index in self._entries

    @property
    def window(self) -> tuple[int, int] | None:
        return self._window

    def indices(self) -> list[int]:
        with self._lock:
            return sorted(self._entries)

    def entry(self, index: int) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(index)

    def in_flight(self) -> set[int]:
        with self._lock:
            return set(self._in_flight)

    def get(self, index: int) -> str | None:
        with self._lock:
            entry = self._entries.get(index)
        return entry.text if entry is not None else None

    def _in_window(self, index: int) -> bool:
        if self._window is None:
            return True
        low, high = self._window
        return low <= index <= high

    def _store(self, index: int, text: str, *, overwrite: bool) -> bool:
        # Caller holds the lock.
        if not self._in_window(index):
            debug_log(f"cache: dropping chapter {index} outside window {self._window}")
            return False
        if not overwrite and index in self._entries:
            return False
        self._entries[index] = CacheEntry(
            chapter_index=index, text=text, inserted_at=next(self._counter)
        )
        return True

    def put(self, index: int, text: str) -> bool:
        with self._lock:
            return self._store(index, text, overwrite=True)

    def reconcile_window(
        self,
        current_index: int,
        last_chapter_index: int,
        ahead_count: int,
        behind_count: int,
    ) -> list[int]:
        """Evict everything outside ``[current-behind, current+ahead]``; return evicted indices."""
        low = max(0, current_index - max(0, behind_count))
        high = min(max(0, last_chapter_index), current_index + max(0, ahead_count))
        with self._lock:
            self._window = (low, high)
            evicted = [idx for idx in self._entries if not low <= idx <= high]
            for idx in evicted:
                del self._entries[idx]
            for idx, future in list(self._in_flight.items()):
                if not low <= idx <= high and future.cancel():
                    del self._in_flight[idx]
        if evicted:
            debug_log(f"cache: evicted chapters {sorted(evicted)}; window now {low}..{high}")
        return sorted(evicted)

    def _run_load(self, index: int) -> str:
        try:
            text = self._loader(index)
        except BaseException:
            with self._lock:
                self._in_flight.pop(index, None)
            raise
        with self._lock:
            self._in_flight.pop(index, None)
            self._store(index, text, overwrite=False)
        return text

    def request(self, index: int, *, foreground: bool = False) -> Future[str]:
        """Return a future for the chapter's text, reusing cache hits and in-flight loads."""
        with self._lock:
            entry = self._entries.get(index)
            if entry is not None:
                done: Future[str] = Future()
                done.set_result(entry.text)
                return done
            pending = self._in_flight.get(index)
            if pending is not None:
                return pending
            executor = self._foreground if foreground else self._executor
            future = executor.submit(self._run_load, index)
            self._in_flight[index] = future
            return future

    def schedule_preload(
        self,
        current_index: int,
        ahead_count: int,
        last_chapter_index: int | None = None,
    ) -> list[Future[str]]:
        launched: list[Future[str]] = []
        for offset in range(1, max(0, ahead_count) + 1):
            target = current_index + offset
            if last_chapter_index is not None and target > last_chapter_index:
                break
            with self._lock:
                if target in self._entries or target in self._in_flight:
                    continue
            future = self.request(target)
            future.add_done_callback(self._preload_callback(target))
            launched.append(future)
        if launched:
            debug_log(f"cache: preloading {len(launched)} chapters after {current_index}")
        return launched

    @staticmethod
    def _preload_callback(index: int) -> Callable[[Future[str]], None]:
        def _report(future: Future[str]) -> None:
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                warn_log(f"preload of chapter {index} failed: {exc}")
            else:
                debug_log(f"cache: preloaded chapter {index}")

        return _report

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._window = None

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            for future in self._in_flight.values():
                future.cancel()
            self._in_flight.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)
        self._foreground.shutdown(wait=wait, cancel_futures=True)


__all__ = ["CacheEntry", "ChapterCache"]
