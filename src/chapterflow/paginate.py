from __future__ import annotations

import math
from dataclasses import dataclass

from .logging_utils import debug_log
from .measure import LineSpan, MonospaceMeasurer, TextMeasurer, block_height
from .models import LayoutParameters, Page

DEFAULT_LINE_SPACING_RATIO = 0.2
_EPSILON = 1e-6


@dataclass
class _Frame:
    line_count: int
    truncated: bool


def _covering_spans(spans: list[LineSpan], text_length: int) -> list[LineSpan]:
    """Rebuild measurer output as gap-free spans that end exactly at ``text_length``."""
    ends = sorted({span.end for span in spans if 0 < span.end <= text_length})
    if not ends or ends[-1] != text_length:
        ends.append(text_length)
    covering: list[LineSpan] = []
    start = 0
    for end in ends:
        covering.append(LineSpan(start, end))
        start = end
    return covering


class Paginator:
    """
    Greedy forward-fill pagination over measured lines.

    Each page takes as many whole lines as fit its content box. Page 0 loses
    the height of the rendered title block. A line that would be clipped at the
    bottom edge moves to the next page, so every page ends on a line boundary.
    """

    def __init__(self, measurer: TextMeasurer | None = None) -> None:
        self.measurer = measurer or MonospaceMeasurer()

    def line_spacing(self, layout: LayoutParameters) -> float:
        if layout.line_spacing is not None:
            return layout.line_spacing
        return self.measurer.line_height(layout.font) * DEFAULT_LINE_SPACING_RATIO

    def title_block_height(self, chapter_title: str, layout: LayoutParameters) -> float:
        title = (chapter_title or "").strip()
        if not title:
            return 0.0
        title_font = layout.font.scaled(layout.title_scale)
        measured = block_height(
            self.measurer,
            title,
            title_font,
            layout.content_width,
            self.line_spacing(layout),
        )
        return measured + layout.title_top_margin + layout.title_bottom_margin

    def page_height(self, page_index: int, title_height: float, layout: LayoutParameters) -> float:
        height = layout.content_height
        if page_index == 0:
            height -= title_height
        return max(0.0, height)

    def _fill_frame(
        self,
        text: str,
        lines: list[LineSpan],
        first_line: int,
        height: float,
        line_height: float,
        spacing: float,
        paragraph_spacing: float,
    ) -> _Frame:
        top = 0.0
        count = 0
        for span in lines[first_line:]:
            if top >= height - _EPSILON:
                break
            count += 1
            bottom = top + line_height
            if bottom > height + _EPSILON:
                return _Frame(line_count=count, truncated=True)
            top = bottom + spacing
            if span.end > span.start and text[span.end - 1] == "\n":
                top += paragraph_spacing
        return _Frame(line_count=count, truncated=False)

    def paginate(self, text: str, layout: LayoutParameters, chapter_title: str) -> list[Page]:
        if not text:
            return [Page(index=0, start_offset=0, length=0, text="")]

        font = layout.font
        line_height = self.measurer.line_height(font)
        spacing = self.line_spacing(layout)
        raw_lines = self.measurer.break_lines(text, font, layout.content_width)
        lines = _covering_spans(list(raw_lines), len(text))
        title_height = self.title_block_height(chapter_title, layout)

        pages: list[Page] = []
        cursor = 0
        line_idx = 0
        while cursor < len(text) and line_idx < len(lines):
            height = self.page_height(len(pages), title_height, layout)
            frame = self._fill_frame(
                text,
                lines,
                line_idx,
                height,
                line_height,
                spacing,
                layout.paragraph_spacing,
            )
            accepted = frame.line_count
            if frame.truncated:
                accepted -= 1
            # A page too small for one line still takes one so the cursor moves.
            accepted = max(accepted, 1)
            end = lines[line_idx + accepted - 1].end
            if end <= cursor:
                break
            pages.append(
                Page(
                    index=len(pages),
                    start_offset=cursor,
                    length=end - cursor,
                    text=text[cursor:end],
                )
            )
            cursor = end
            line_idx += accepted

        if cursor < len(text):
            # Unreachable with covering spans; keeps the tail from being dropped.
            tail_start = pages[-1].start_offset if pages else 0
            if pages:
                pages.pop()
            pages.append(
                Page(
                    index=len(pages),
                    start_offset=tail_start,
                    length=len(text) - tail_start,
                    text=text[tail_start:],
                )
            )

        debug_log(
            f"paginated {len(text)} chars into {len(pages)} pages "
            f"(first page {self.page_height(0, title_height, layout):.1f}pt, "
            f"others {layout.content_height:.1f}pt)"
        )
        return pages


def paginate(
    text: str,
    layout: LayoutParameters,
    chapter_title: str,
    measurer: TextMeasurer | None = None,
) -> list[Page]:
    return Paginator(measurer).paginate(text, layout, chapter_title)


def clamp_page_index(page_index: int, total_pages: int) -> int:
    return max(0, min(page_index, max(total_pages, 1) - 1))


def progress_fraction(page_index: int, total_pages: int) -> float:
    if total_pages <= 1:
        return 0.0
    return page_index / max(total_pages - 1, 1)


def page_for_progress(fraction: float, total_pages: int) -> int:
    if total_pages <= 1:
        return 0
    clamped = max(0.0, min(1.0, float(fraction)))
    # Halves round away from zero.
    return int(math.floor(clamped * (total_pages - 1) + 0.5))


__all__ = [
    "DEFAULT_LINE_SPACING_RATIO",
    "Paginator",
    "clamp_page_index",
    "page_for_progress",
    "paginate",
    "progress_fraction",
]
