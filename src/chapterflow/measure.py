from __future__ import annotations

import unicodedata
from pathlib import Path
from typing import Mapping, NamedTuple, Protocol

from .models import FontDescriptor

# Characters that may not start a line.
_NO_LINE_START = set("，。、；：！？）」』】〕〉》”’…—,.;:!?)]}%·")
# Characters that may not end a line.
_NO_LINE_END = set("（「『【〔〈《“‘([{")


class LineSpan(NamedTuple):
    """Half-open ``[start, end)`` range of one laid-out line.

    A line that ends at a hard break includes the newline character, so the
    spans of a text always cover it without gaps.
    """

    start: int
    end: int


class TextMeasurer(Protocol):
    def line_height(self, font: FontDescriptor) -> float:
        ...

    def break_lines(self, text: str, font: FontDescriptor, max_width: float) -> list[LineSpan]:
        ...


def is_wide_char(ch: str) -> bool:
    return unicodedata.east_asian_width(ch) in ("W", "F")


def _can_break_between(text: str, k: int) -> bool:
    before = text[k - 1]
    after = text[k]
    if after == " " or after in _NO_LINE_START or before in _NO_LINE_END:
        return False
    return before == " " or is_wide_char(before) or is_wide_char(after)


def _break_position(text: str, start: int, overflow: int) -> int:
    for k in range(overflow, start, -1):
        if _can_break_between(text, k):
            return k
    return overflow


class WrappingMeasurer:
    """Greedy word-wrap over per-character advances.

    Breaks after spaces and around wide (CJK) characters, keeps closing
    punctuation off line starts, and hard-breaks words wider than the line.
    Subclasses only provide ``char_width`` and ``line_height``.
    """

    def char_width(self, ch: str, font: FontDescriptor) -> float:
        raise NotImplementedError

    def line_height(self, font: FontDescriptor) -> float:
        raise NotImplementedError

    def text_width(self, text: str, font: FontDescriptor) -> float:
        return sum(self.char_width(ch, font) for ch in text)

    def break_lines(self, text: str, font: FontDescriptor, max_width: float) -> list[LineSpan]:
        spans: list[LineSpan] = []
        cursor = 0
        length = len(text)
        while cursor < length:
            newline = text.find("\n", cursor)
            segment_end = length if newline == -1 else newline
            segment = self._wrap_segment(text, cursor, segment_end, font, max_width)
            if newline != -1:
                if segment:
                    last = segment.pop()
                    segment.append(LineSpan(last.start, newline + 1))
                else:
                    segment.append(LineSpan(newline, newline + 1))
                cursor = newline + 1
            else:
                cursor = length
            spans.extend(segment)
        return spans

    def _wrap_segment(
        self,
        text: str,
        start: int,
        end: int,
        font: FontDescriptor,
        max_width: float,
    ) -> list[LineSpan]:
        if start >= end:
            return []
        lines: list[LineSpan] = []
        line_start = start
        width = 0.0
        idx = start
        while idx < end:
            ch = text[idx]
            advance = self.char_width(ch, font)
            if ch == " " or idx == line_start or width + advance <= max_width:
                width += advance
                idx += 1
                continue
            cut = _break_position(text, line_start, idx)
            lines.append(LineSpan(line_start, cut))
            line_start = cut
            width = self.text_width(text[line_start:idx], font)
        lines.append(LineSpan(line_start, end))
        return lines


class MonospaceMeasurer(WrappingMeasurer):
    """Deterministic measurer: wide characters take one em, others half an em."""

    def __init__(self, line_height_factor: float = 1.2) -> None:
        self.line_height_factor = line_height_factor

    def char_width(self, ch: str, font: FontDescriptor) -> float:
        if unicodedata.combining(ch):
            return 0.0
        if is_wide_char(ch):
            return font.point_size
        return font.point_size / 2

    def line_height(self, font: FontDescriptor) -> float:
        return font.point_size * self.line_height_factor


class PillowMeasurer(WrappingMeasurer):
    """Measures with real font files through Pillow's FreeType bindings.

    ``font_paths`` maps a family name to a ``.ttf``/``.otf``/``.ttc`` file.
    Unknown families fall back to Pillow's bundled default font.
    """

    def __init__(self, font_paths: Mapping[str, str | Path] | None = None) -> None:
        from PIL import ImageFont

        self._image_font = ImageFont
        self.font_paths = {name: Path(path) for name, path in (font_paths or {}).items()}
        self._fonts: dict[tuple[str, float], object] = {}
        self._widths: dict[tuple[str, float, str], float] = {}

    def _load(self, font: FontDescriptor):
        key = (font.family, font.point_size)
        cached = self._fonts.get(key)
        if cached is not None:
            return cached
        path = self.font_paths.get(font.family)
        if path is not None:
            loaded = self._image_font.truetype(str(path), size=max(1, round(font.point_size)))
        else:
            loaded = self._image_font.load_default(size=font.point_size)
        self._fonts[key] = loaded
        return loaded

    def char_width(self, ch: str, font: FontDescriptor) -> float:
        key = (font.family, font.point_size, ch)
        width = self._widths.get(key)
        if width is None:
            width = float(self._load(font).getlength(ch))
            self._widths[key] = width
        return width

    def line_height(self, font: FontDescriptor) -> float:
        loaded = self._load(font)
        try:
            ascent, descent = loaded.getmetrics()
        except AttributeError:
            return font.point_size * 1.2
        return float(ascent + descent)


def block_height(
    measurer: TextMeasurer,
    text: str,
    font: FontDescriptor,
    max_width: float,
    line_spacing: float,
) -> float:
    """Height of ``text`` wrapped to ``max_width``, line spacing between lines only."""
    lines = measurer.break_lines(text, font, max_width)
    if not lines:
        return 0.0
    return len(lines) * measurer.line_height(font) + (len(lines) - 1) * line_spacing


__all__ = [
    "LineSpan",
    "MonospaceMeasurer",
    "PillowMeasurer",
    "TextMeasurer",
    "WrappingMeasurer",
    "block_height",
    "is_wide_char",
]
