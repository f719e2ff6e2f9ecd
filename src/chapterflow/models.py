from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum


@dataclass(frozen=True)
class Chapter:
    title: str
    source_link: str
    ordinal_index: int


@dataclass
class Book:
    title: str
    author: str
    source_link: str
    chapters: list[Chapter] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cover_url: str | None = None
    status: str | None = None
    last_updated: str | None = None
    introduction: str | None = None

    @property
    def last_chapter_index(self) -> int:
        return len(self.chapters) - 1

    def replace_chapters(self, entries: list[tuple[str, str]]) -> None:
        """Swap in a freshly parsed chapter list, renumbering ordinals."""
        self.chapters = [
            Chapter(title=title, source_link=link, ordinal_index=idx)
            for idx, (title, link) in enumerate(entries)
        ]

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "source_link": self.source_link,
            "cover_url": self.cover_url,
            "status": self.status,
            "last_updated": self.last_updated,
            "introduction": self.introduction,
            "chapter_count": len(self.chapters),
        }


class TextAlignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    JUSTIFIED = "justified"


@dataclass(frozen=True)
class FontDescriptor:
    family: str = "PingFang SC"
    point_size: float = 20.0

    def scaled(self, factor: float) -> "FontDescriptor":
        return replace(self, point_size=self.point_size * factor)


@dataclass(frozen=True)
class LayoutParameters:
    """Everything the pagination engine needs to know about the page box.

    Instances compare by value; any difference means the current chapter's
    pages have to be recomputed.
    """

    viewport_width: float
    viewport_height: float
    font: FontDescriptor = FontDescriptor()
    line_spacing: float | None = None
    paragraph_spacing: float = 0.0
    alignment: TextAlignment = TextAlignment.JUSTIFIED
    header_reserved_height: float = 40.0
    footer_reserved_height: float = 20.0
    horizontal_padding: float = 20.0
    top_padding: float = 10.0
    bottom_padding: float = 10.0
    title_scale: float = 1.4
    title_top_margin: float = 10.0
    title_bottom_margin: float = 20.0

    @property
    def content_width(self) -> float:
        return max(0.0, self.viewport_width - 2 * self.horizontal_padding)

    @property
    def content_height(self) -> float:
        chrome = (
            self.header_reserved_height
            + self.footer_reserved_height
            + self.top_padding
            + self.bottom_padding
        )
        return max(0.0, self.viewport_height - chrome)

    def with_font(self, font: FontDescriptor) -> "LayoutParameters":
        return replace(self, font=font)

    def with_viewport(self, width: float, height: float) -> "LayoutParameters":
        return replace(self, viewport_width=width, viewport_height=height)


@dataclass(frozen=True)
class Page:
    index: int
    start_offset: int
    length: int
    text: str

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.length


@dataclass(frozen=True)
class ReadingPosition:
    chapter_index: int = 0
    page_index: int = 0

    def to_payload(self) -> dict[str, int]:
        return {"chapter_index": self.chapter_index, "page_index": self.page_index}


__all__ = [
    "Book",
    "Chapter",
    "FontDescriptor",
    "LayoutParameters",
    "Page",
    "ReadingPosition",
    "TextAlignment",
]
