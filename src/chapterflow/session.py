from __future__ import annotations

import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .cache import ChapterCache
from .config import ReaderConfig, clamp_font_size
from .errors import ChapterflowError, InvalidChapterIndex
from .fetch import ChapterFetcher, load_chapter_text
from .logging_utils import debug_log, warn_log
from .measure import TextMeasurer
from .models import Book, FontDescriptor, LayoutParameters, Page, ReadingPosition
from .paginate import Paginator, clamp_page_index, page_for_progress, progress_fraction

if TYPE_CHECKING:
    from .storage import ReaderStore


class LoadState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    ERROR = "error"


class EntryPoint(str, Enum):
    """Which page a freshly loaded chapter opens on."""

    START = "start"
    END = "end"
    RESTORE = "restore"


class SessionEventKind(str, Enum):
    PAGES_READY = "pages_ready"
    LOAD_FAILED = "load_failed"
    PROGRESS_CHANGED = "progress_changed"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    chapter_index: int
    page_index: int
    total_pages: int
    progress: float
    message: str | None = None


@dataclass(frozen=True)
class LoadOutcome:
    chapter_index: int
    applied: bool
    error: str | None = None


SessionListener = Callable[[SessionEvent], None]


class ReadingSession:
    """
    Owns the reading state of one open book.

    Commands (``load_chapter``, ``next_page`` ...) are issued from one
    controlling thread. Chapter loads run on a small worker pool and apply their
    result under the session lock; a load whose target was superseded by a
    newer ``load_chapter`` call is dropped on arrival. Observers get
    ``SessionEvent`` callbacks from whichever thread finished the work.
    """

    def __init__(
        self,
        book: Book,
        layout: LayoutParameters,
        *,
        fetcher: ChapterFetcher,
        config: ReaderConfig | None = None,
        measurer: TextMeasurer | None = None,
        store: "ReaderStore | None" = None,
        initial_position: ReadingPosition | None = None,
        cache: ChapterCache | None = None,
    ) -> None:
        self.book = book
        self.config = config or ReaderConfig()
        self.profile = self.config.site
        self._fetcher = fetcher
        self._paginator = Paginator(measurer)
        self._store = store
        self._lock = threading.RLock()
        self._listeners: list[SessionListener] = []
        self._layout = layout
        self._state = LoadState.IDLE
        self._error: str | None = None
        self._text = ""
        self._pages: list[Page] = []
        self._page_index = 0
        self._progress = 0.0
        self._generation = 0
        self._pending: Future[LoadOutcome] | None = None
        self._last_entry = EntryPoint.START
        self._initial_load = True

        start = initial_position or ReadingPosition()
        if store is not None and initial_position is None:
            saved = store.load_position(book.id)
            if saved is not None:
                start = saved
        self._chapter_index = 0
        self._restore_page: int | None = None
        if 0 <= start.chapter_index < len(book.chapters):
            self._chapter_index = start.chapter_index
            if self.config.restore_progress:
                self._restore_page = start.page_index
        else:
            debug_log(f"session: saved chapter {start.chapter_index} out of range; starting at chapter 0")

        self._cache = cache or ChapterCache(self._load_text, max_workers=self.config.fetch_workers)
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="chapterflow-session")

    # -- observable state -------------------------------------------------

    @property
    def cache(self) -> ChapterCache:
        return self._cache

    @property
    def layout(self) -> LayoutParameters:
        return self._layout

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is LoadState.FETCHING

    @property
    def error_message(self) -> str | None:
        return self._error

    @property
    def chapter_index(self) -> int:
        return self._chapter_index

    @property
    def current_page_index(self) -> int:
        return self._page_index

    @property
    def total_pages(self) -> int:
        return len(self._pages)

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def chapter_title(self) -> str:
        if 0 <= self._chapter_index < len(self.book.chapters):
            return self.book.chapters[self._chapter_index].title
        return "Unknown Chapter"

    @property
    def position(self) -> ReadingPosition:
        return ReadingPosition(self._chapter_index, self._page_index)

    @property
    def chapter_text(self) -> str:
        return self._text

    def pages(self) -> list[Page]:
        with self._lock:
            return list(self._pages)

    def current_pages(self) -> list[str]:
        with self._lock:
            return [page.text for page in self._pages]

    def current_page_text(self) -> str:
        with self._lock:
            if not self._pages:
                return ""
            return self._pages[self._page_index].text

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "book_id": self.book.id,
                "chapter_index": self._chapter_index,
                "chapter_title": self.chapter_title,
                "page_index": self._page_index,
                "total_pages": len(self._pages),
                "progress": self._progress,
                "state": self._state.value,
                "is_loading": self.is_loading,
                "error": self._error,
                "page_text": self._pages[self._page_index].text if self._pages else "",
            }

    # -- events -----------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _event(self, kind: SessionEventKind, message: str | None = None) -> SessionEvent:
        return SessionEvent(
            kind=kind,
            chapter_index=self._chapter_index,
            page_index=self._page_index,
            total_pages=len(self._pages),
            progress=self._progress,
            message=message,
        )

    def _emit(self, events: list[SessionEvent]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception as exc:  # pragma: no cover - listener bugs stay local
                    warn_log(f"session listener failed on {event.kind.value}: {exc}")

    # -- chapter loading --------------------------------------------------

    def _load_text(self, index: int) -> str:
        return load_chapter_text(self._fetcher, self.book.chapters[index], self.profile)

    def _reconcile_cache(self, index: int) -> None:
        self._cache.reconcile_window(
            index,
            self.book.last_chapter_index,
            self.config.preload_ahead,
            self.config.preload_behind,
        )

    def open(self) -> Future[LoadOutcome]:
        """Load the starting chapter, restoring the saved page when enabled."""
        if not self.book.chapters:
            raise InvalidChapterIndex(0, 0)
        entry = EntryPoint.RESTORE if self._restore_page is not None else EntryPoint.START
        return self.load_chapter(self._chapter_index, entry=entry)

    def load_chapter(self, index: int, *, entry: EntryPoint = EntryPoint.START) -> Future[LoadOutcome]:
        if not 0 <= index < len(self.book.chapters):
            raise InvalidChapterIndex(index, len(self.book.chapters))
        with self._lock:
            self._generation += 1
            token = self._generation
            if self._pending is not None and not self._pending.done():
                self._pending.cancel()
            if entry is EntryPoint.RESTORE and not self._initial_load:
                entry = EntryPoint.START
            self._chapter_index = index
            self._state = LoadState.FETCHING
            self._error = None
            self._last_entry = entry
            self._reconcile_cache(index)
            future = self._executor.submit(self._run_load, token, index, entry)
            self._pending = future
        debug_log(f"session: loading chapter {index} ({entry.value})")
        return future

    def retry_load_current_chapter(self) -> Future[LoadOutcome]:
        return self.load_chapter(self._chapter_index, entry=self._last_entry)

    def _entry_page(self, entry: EntryPoint, total_pages: int) -> int:
        if entry is EntryPoint.END:
            return total_pages - 1
        if entry is EntryPoint.RESTORE and self._initial_load and self._restore_page is not None:
            return clamp_page_index(self._restore_page, total_pages)
        return 0

    def _run_load(self, token: int, index: int, entry: EntryPoint) -> LoadOutcome:
        try:
            text = self._cache.request(index, foreground=True).result()
        except CancelledError:
            return LoadOutcome(index, applied=False)
        except ChapterflowError as exc:
            return self._fail(token, index, str(exc))
        except Exception as exc:
            self._fail(token, index, f"Unexpected error: {exc}")
            raise

        title = self.book.chapters[index].title
        while True:
            with self._lock:
                if token != self._generation:
                    debug_log(f"session: discarding stale load of chapter {index}")
                    return LoadOutcome(index, applied=False)
                layout = self._layout
            pages = self._paginator.paginate(text, layout, title)
            with self._lock:
                if token != self._generation:
                    debug_log(f"session: discarding stale load of chapter {index}")
                    return LoadOutcome(index, applied=False)
                if layout != self._layout:
                    continue
                self._text = text
                self._pages = pages
                self._chapter_index = index
                self._page_index = clamp_page_index(self._entry_page(entry, len(pages)), len(pages))
                self._progress = progress_fraction(self._page_index, len(pages))
                self._state = LoadState.READY
                self._error = None
                self._initial_load = False
                self._cache.put(index, text)
                self._reconcile_cache(index)
                events = [
                    self._event(SessionEventKind.PAGES_READY),
                    self._event(SessionEventKind.PROGRESS_CHANGED),
                ]
                break
        debug_log(
            f"session: chapter {index} ready with {len(pages)} pages, page {self._page_index}"
        )
        self._record_history()
        self._emit(events)
        self._after_navigation()
        return LoadOutcome(index, applied=True)

    def _fail(self, token: int, index: int, message: str) -> LoadOutcome:
        with self._lock:
            if token != self._generation:
                return LoadOutcome(index, applied=False, error=message)
            self._state = LoadState.ERROR
            self._error = message
            self._text = ""
            self._pages = []
            self._page_index = 0
            self._progress = 0.0
            event = self._event(SessionEventKind.LOAD_FAILED, message)
        debug_log(f"session: chapter {index} failed: {message}")
        self._emit([event])
        return LoadOutcome(index, applied=True, error=message)

    # -- navigation -------------------------------------------------------

    def _find_chapter(self, start: int, step: int) -> int | None:
        idx = start
        while 0 <= idx < len(self.book.chapters):
            if not self.profile.is_placeholder_title(self.book.chapters[idx].title):
                return idx
            idx += step
        return None

    def _move_to_page(self, page_index: int) -> bool:
        with self._lock:
            if self._state is not LoadState.READY or not self._pages:
                return False
            page_index = clamp_page_index(page_index, len(self._pages))
            self._page_index = page_index
            self._progress = progress_fraction(page_index, len(self._pages))
            event = self._event(SessionEventKind.PROGRESS_CHANGED)
        self._emit([event])
        self._after_navigation()
        return True

    def next_page(self) -> Future[LoadOutcome] | None:
        with self._lock:
            if self._state is not LoadState.READY:
                return None
            if self._page_index < len(self._pages) - 1:
                target_page = self._page_index + 1
                target_chapter = None
            else:
                target_page = None
                target_chapter = self._find_chapter(self._chapter_index + 1, 1)
        if target_page is not None:
            self._move_to_page(target_page)
            return None
        if target_chapter is None:
            debug_log("session: already at the last page of the book")
            return None
        return self.load_chapter(target_chapter, entry=EntryPoint.START)

    def previous_page(self) -> Future[LoadOutcome] | None:
        with self._lock:
            if self._state is not LoadState.READY:
                return None
            if self._page_index > 0:
                target_page = self._page_index - 1
                target_chapter = None
            else:
                target_page = None
                target_chapter = self._find_chapter(self._chapter_index - 1, -1)
        if target_page is not None:
            self._move_to_page(target_page)
            return None
        if target_chapter is None:
            debug_log("session: already at the first page of the book")
            return None
        return self.load_chapter(target_chapter, entry=EntryPoint.END)

    def next_chapter(self) -> Future[LoadOutcome] | None:
        target = self._find_chapter(self._chapter_index + 1, 1)
        if target is None:
            return None
        return self.load_chapter(target, entry=EntryPoint.START)

    def previous_chapter(self) -> Future[LoadOutcome] | None:
        target = self._find_chapter(self._chapter_index - 1, -1)
        if target is None:
            return None
        return self.load_chapter(target, entry=EntryPoint.START)

    def jump_to_progress(self, fraction: float) -> bool:
        with self._lock:
            total = len(self._pages)
        return self._move_to_page(page_for_progress(fraction, total))

    # -- layout -----------------------------------------------------------

    def set_layout(self, layout: LayoutParameters) -> Future[bool] | None:
        """Swap layout parameters; the current chapter is re-paginated off-thread."""
        with self._lock:
            if layout == self._layout:
                return None
            self._layout = layout
            if self._state is not LoadState.READY:
                return None
            token = self._generation
            text = self._text
            index = self._chapter_index
        return self._executor.submit(self._repaginate, token, index, text, layout)

    def set_font_size(self, size: float) -> Future[bool] | None:
        font = self._layout.font
        clamped = clamp_font_size(size)
        if self._store is not None:
            self._store.update_preferences(font_size=clamped)
        return self.set_layout(self._layout.with_font(FontDescriptor(font.family, clamped)))

    def set_font_family(self, family: str) -> Future[bool] | None:
        font = self._layout.font
        if self._store is not None:
            self._store.update_preferences(font_family=family)
        return self.set_layout(self._layout.with_font(FontDescriptor(family, font.point_size)))

    def _repaginate(self, token: int, index: int, text: str, layout: LayoutParameters) -> bool:
        pages = self._paginator.paginate(text, layout, self.book.chapters[index].title)
        with self._lock:
            if token != self._generation or layout != self._layout or index != self._chapter_index:
                return False
            self._pages = pages
            self._page_index = clamp_page_index(self._page_index, len(pages))
            self._progress = progress_fraction(self._page_index, len(pages))
            events = [
                self._event(SessionEventKind.PAGES_READY),
                self._event(SessionEventKind.PROGRESS_CHANGED),
            ]
        self._emit(events)
        self._save_position()
        return True

    # -- side effects -----------------------------------------------------

    def _save_position(self) -> None:
        if self._store is None:
            return
        self._store.save_position(self.book.id, self.position)

    def _record_history(self) -> None:
        if self._store is None:
            return
        self._store.record_history(self.book, self.chapter_title)

    def _after_navigation(self) -> None:
        self._save_position()
        if not self.config.auto_preload:
            return
        with self._lock:
            if self._state is not LoadState.READY:
                return
            current = self._chapter_index
        self._cache.schedule_preload(
            current, self.config.preload_ahead, self.book.last_chapter_index
        )

    def wait(self, timeout: float | None = None) -> LoadOutcome | None:
        """Block until the most recent chapter load finishes."""
        pending = self._pending
        if pending is None:
            return None
        try:
            return pending.result(timeout=timeout)
        except CancelledError:
            return None

    def close(self) -> None:
        self._cache.shutdown()
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = [
    "EntryPoint",
    "LoadOutcome",
    "LoadState",
    "ReadingSession",
    "SessionEvent",
    "SessionEventKind",
    "SessionListener",
]
