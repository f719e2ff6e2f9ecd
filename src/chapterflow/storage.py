from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_FONT_SIZE, clamp_font_size
from .models import Book, ReadingPosition

STATE_FILENAME = ".chapterflow-state.json"
STATE_VERSION = 1
DEFAULT_FONT_FAMILY = "PingFang SC"
DEFAULT_HISTORY_LIMIT = 20
_MAX_LABEL_LENGTH = 200


@dataclass(slots=True)
class Preferences:
    font_family: str = DEFAULT_FONT_FAMILY
    font_size: float = DEFAULT_FONT_SIZE
    background_index: int = 0


@dataclass(slots=True)
class HistoryRecord:
    book_id: str
    title: str
    author: str
    source_link: str
    last_chapter: str
    last_read: float


@dataclass(slots=True)
class Bookmark:
    id: str
    chapter_index: int
    page_index: int
    label: str | None
    created_at: float


def _empty_state() -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "positions": {},
        "preferences": {},
        "history": [],
        "bookmarks": {},
    }


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class ReaderStore:
    """JSON-file persistence for positions, preferences, history and bookmarks.

    A missing or unreadable state file behaves like an empty one.
    """

    def __init__(self, root: Path, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.root = root
        self.path = root / STATE_FILENAME
        self.history_limit = max(1, history_limit)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return _empty_state()
        if not isinstance(raw, dict):
            return _empty_state()
        state = _empty_state()
        for key, expected in (
            ("positions", dict),
            ("preferences", dict),
            ("history", list),
            ("bookmarks", dict),
        ):
            value = raw.get(key)
            if isinstance(value, expected):
                state[key] = value
        return state

    def _save(self, state: dict[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(state, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )

    # positions

    def save_position(self, book_id: str, position: ReadingPosition) -> None:
        with self._lock:
            state = self._load()
            positions = state["positions"]
            positions[book_id] = {
                "chapter_index": position.chapter_index,
                "page_index": position.page_index,
                "updated_at": time.time(),
            }
            self._save(state)

    def load_position(self, book_id: str) -> ReadingPosition | None:
        with self._lock:
            state = self._load()
        entry = state["positions"].get(book_id)
        if not isinstance(entry, dict):
            return None
        chapter = _as_int(entry.get("chapter_index"))
        page = _as_int(entry.get("page_index"))
        if chapter is None or chapter < 0:
            return None
        return ReadingPosition(chapter, page if page is not None and page >= 0 else 0)

    # preferences

    def load_preferences(self) -> Preferences:
        with self._lock:
            state = self._load()
        raw = state["preferences"]
        prefs = Preferences()
        family = raw.get("font_family")
        if isinstance(family, str) and family.strip():
            prefs.font_family = family.strip()
        size = raw.get("font_size")
        if isinstance(size, (int, float)) and not isinstance(size, bool) and size > 0:
            prefs.font_size = clamp_font_size(size)
        background = _as_int(raw.get("background_index"))
        if background is not None and background >= 0:
            prefs.background_index = background
        return prefs

    def update_preferences(
        self,
        *,
        font_family: str | None = None,
        font_size: float | None = None,
        background_index: int | None = None,
    ) -> Preferences:
        with self._lock:
            state = self._load()
            raw = state["preferences"]
            if font_family is not None:
                raw["font_family"] = font_family
            if font_size is not None:
                raw["font_size"] = clamp_font_size(font_size)
            if background_index is not None:
                raw["background_index"] = max(0, int(background_index))
            self._save(state)
        return self.load_preferences()

    # history

    def record_history(self, book: Book, chapter_title: str) -> None:
        with self._lock:
            state = self._load()
            history = [
                entry
                for entry in state["history"]
                if isinstance(entry, dict) and entry.get("book_id") != book.id
            ]
            history.insert(
                0,
                {
                    "book_id": book.id,
                    "title": book.title,
                    "author": book.author,
                    "source_link": book.source_link,
                    "last_chapter": chapter_title,
                    "last_read": time.time(),
                },
            )
            state["history"] = history[: self.history_limit]
            self._save(state)

    def reading_history(self) -> list[HistoryRecord]:
        with self._lock:
            state = self._load()
        records: list[HistoryRecord] = []
        for entry in state["history"]:
            if not isinstance(entry, dict):
                continue
            book_id = entry.get("book_id")
            if not isinstance(book_id, str):
                continue
            last_read = entry.get("last_read")
            records.append(
                HistoryRecord(
                    book_id=book_id,
                    title=str(entry.get("title") or ""),
                    author=str(entry.get("author") or ""),
                    source_link=str(entry.get("source_link") or ""),
                    last_chapter=str(entry.get("last_chapter") or ""),
                    last_read=float(last_read) if isinstance(last_read, (int, float)) else 0.0,
                )
            )
        return records

    # bookmarks

    def _book_bookmarks(self, state: dict[str, Any], book_id: str) -> list[dict[str, object]]:
        bookmarks = state["bookmarks"]
        entries = bookmarks.get(book_id)
        if not isinstance(entries, list):
            entries = []
        bookmarks[book_id] = entries
        return entries

    def add_bookmark(
        self,
        book_id: str,
        position: ReadingPosition,
        label: str | None = None,
    ) -> Bookmark:
        label_text = label.strip() if isinstance(label, str) else None
        if label_text:
            label_text = label_text[:_MAX_LABEL_LENGTH]
        else:
            label_text = None
        bookmark = Bookmark(
            id=uuid.uuid4().hex,
            chapter_index=position.chapter_index,
            page_index=position.page_index,
            label=label_text,
            created_at=time.time(),
        )
        with self._lock:
            state = self._load()
            self._book_bookmarks(state, book_id).append(
                {
                    "id": bookmark.id,
                    "chapter_index": bookmark.chapter_index,
                    "page_index": bookmark.page_index,
                    "label": bookmark.label,
                    "created_at": bookmark.created_at,
                }
            )
            self._save(state)
        return bookmark

    def remove_bookmark(self, book_id: str, bookmark_id: str) -> bool:
        with self._lock:
            state = self._load()
            entries = self._book_bookmarks(state, book_id)
            filtered = [entry for entry in entries if entry.get("id") != bookmark_id]
            if len(filtered) == len(entries):
                return False
            state["bookmarks"][book_id] = filtered
            self._save(state)
        return True

    def list_bookmarks(self, book_id: str) -> list[Bookmark]:
        with self._lock:
            state = self._load()
        result: list[Bookmark] = []
        for entry in self._book_bookmarks(state, book_id):
            if not isinstance(entry, dict):
                continue
            entry_id = entry.get("id")
            chapter = _as_int(entry.get("chapter_index"))
            page = _as_int(entry.get("page_index"))
            if not isinstance(entry_id, str) or chapter is None or page is None:
                continue
            label = entry.get("label")
            created = entry.get("created_at")
            result.append(
                Bookmark(
                    id=entry_id,
                    chapter_index=chapter,
                    page_index=page,
                    label=label if isinstance(label, str) else None,
                    created_at=float(created) if isinstance(created, (int, float)) else 0.0,
                )
            )
        result.sort(key=lambda item: (item.chapter_index, item.page_index, item.created_at))
        return result


__all__ = [
    "Bookmark",
    "HistoryRecord",
    "Preferences",
    "ReaderStore",
    "STATE_FILENAME",
]
