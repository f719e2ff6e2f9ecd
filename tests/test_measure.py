from __future__ import annotations

import pytest

from chapterflow.measure import LineSpan, MonospaceMeasurer, PillowMeasurer, block_height, is_wide_char
from chapterflow.models import FontDescriptor

FONT = FontDescriptor("Test", 20.0)


def _lines(text: str, width: float) -> list[str]:
    return [text[span.start : span.end] for span in MonospaceMeasurer().break_lines(text, FONT, width)]


def test_wide_chars_take_one_em() -> None:
    measurer = MonospaceMeasurer()
    assert is_wide_char("中")
    assert not is_wide_char("a")
    assert measurer.text_width("中a", FONT) == 30.0
    assert measurer.line_height(FONT) == pytest.approx(24.0)


def test_latin_text_wraps_after_spaces() -> None:
    assert _lines("hello world foo", 60) == ["hello ", "world ", "foo"]


def test_closing_punctuation_never_starts_a_line() -> None:
    lines = _lines("一二三。四", 60)
    assert lines == ["一二", "三。四"]


def test_hard_breaks_keep_newline_in_line() -> None:
    text = "甲乙\n\n丙"
    spans = MonospaceMeasurer().break_lines(text, FONT, 200)
    assert spans == [LineSpan(0, 3), LineSpan(3, 4), LineSpan(4, 5)]


def test_spans_cover_text_without_gaps() -> None:
    text = "　　天色将晚，他沿着山路往下走，想着明天进城的事。\n\n　　Rain fell on the old road and nobody came.\n"
    spans = MonospaceMeasurer().break_lines(text, FONT, 120)
    assert spans[0].start == 0
    assert spans[-1].end == len(text)
    for prev, nxt in zip(spans, spans[1:]):
        assert prev.end == nxt.start


def test_overlong_word_is_split() -> None:
    assert _lines("abcdefghij", 40) == ["abcd", "efgh", "ij"]


def test_block_height_counts_spacing_between_lines_only() -> None:
    measurer = MonospaceMeasurer()
    assert block_height(measurer, "一二三四", FONT, 40, 5) == pytest.approx(24 * 2 + 5)
    assert block_height(measurer, "", FONT, 40, 5) == 0.0


def test_pillow_measurer_uses_default_font() -> None:
    pytest.importorskip("PIL.ImageFont")
    measurer = PillowMeasurer()
    font = FontDescriptor("missing-family", 18.0)
    assert measurer.char_width("W", font) > 0
    assert measurer.line_height(font) > 0
    spans = measurer.break_lines("word " * 40, font, 200)
    assert len(spans) > 1
    assert spans[-1].end == len("word " * 40)
