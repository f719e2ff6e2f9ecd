from __future__ import annotations

import json

from chapterflow.models import Book, ReadingPosition
from chapterflow.storage import STATE_FILENAME, ReaderStore


def _book(idx: int) -> Book:
    return Book(title=f"书{idx}", author="作者", source_link=f"https://www.bqgda.cc/book/{idx}/", id=f"book-{idx}")


def test_positions_round_trip_and_survive_reload(tmp_path) -> None:
    store = ReaderStore(tmp_path)
    assert store.load_position("book-1") is None
    store.save_position("book-1", ReadingPosition(4, 7))
    assert ReaderStore(tmp_path).load_position("book-1") == ReadingPosition(4, 7)
    raw = json.loads((tmp_path / STATE_FILENAME).read_text(encoding="utf-8"))
    assert raw["positions"]["book-1"]["chapter_index"] == 4
    assert "updated_at" in raw["positions"]["book-1"]


def test_corrupt_state_file_is_treated_as_empty(tmp_path) -> None:
    (tmp_path / STATE_FILENAME).write_text("{not json", encoding="utf-8")
    store = ReaderStore(tmp_path)
    assert store.load_position("book-1") is None
    assert store.reading_history() == []
    store.save_position("book-1", ReadingPosition(1, 0))
    assert store.load_position("book-1") == ReadingPosition(1, 0)


def test_invalid_position_entries_are_ignored(tmp_path) -> None:
    state = {"positions": {"a": {"chapter_index": "x"}, "b": {"chapter_index": 2, "page_index": -4}}}
    (tmp_path / STATE_FILENAME).write_text(json.dumps(state), encoding="utf-8")
    store = ReaderStore(tmp_path)
    assert store.load_position("a") is None
    assert store.load_position("b") == ReadingPosition(2, 0)


def test_preferences_default_and_clamp(tmp_path) -> None:
    store = ReaderStore(tmp_path)
    prefs = store.load_preferences()
    assert (prefs.font_family, prefs.font_size, prefs.background_index) == ("PingFang SC", 20.0, 0)
    updated = store.update_preferences(font_size=8, font_family="Songti SC", background_index=3)
    assert updated.font_size == 16.0
    assert updated.font_family == "Songti SC"
    assert updated.background_index == 3
    assert store.update_preferences(font_size=99).font_size == 30.0


def test_history_is_newest_first_unique_and_limited(tmp_path) -> None:
    store = ReaderStore(tmp_path, history_limit=3)
    for idx in range(5):
        store.record_history(_book(idx), f"第{idx}章")
    store.record_history(_book(3), "第九章")
    history = store.reading_history()
    assert [record.book_id for record in history] == ["book-3", "book-4", "book-2"]
    assert history[0].last_chapter == "第九章"
    assert history[0].last_read >= history[1].last_read


def test_bookmarks_add_list_remove(tmp_path) -> None:
    store = ReaderStore(tmp_path)
    late = store.add_bookmark("book-1", ReadingPosition(5, 1), "  高潮  ")
    early = store.add_bookmark("book-1", ReadingPosition(2, 3))
    long_label = store.add_bookmark("book-1", ReadingPosition(9, 0), "长" * 500)
    store.add_bookmark("book-2", ReadingPosition(0, 0))

    marks = store.list_bookmarks("book-1")
    assert [mark.id for mark in marks] == [early.id, late.id, long_label.id]
    assert marks[0].label is None
    assert marks[1].label == "高潮"
    assert len(marks[2].label) == 200

    assert store.remove_bookmark("book-1", late.id)
    assert not store.remove_bookmark("book-1", late.id)
    assert [mark.id for mark in store.list_bookmarks("book-1")] == [early.id, long_label.id]
    assert len(store.list_bookmarks("book-2")) == 1
    assert store.list_bookmarks("missing") == []
