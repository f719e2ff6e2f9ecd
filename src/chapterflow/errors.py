from __future__ import annotations


class ChapterflowError(RuntimeError):
    """Base class for failures surfaced by the chapter pipeline."""


class NetworkError(ChapterflowError):
    """Raised when a chapter or table-of-contents page cannot be fetched."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ExtractError(ChapterflowError):
    """Raised when chapter markup cannot be turned into text."""


class ContentNotFound(ExtractError):
    """Raised when the chapter body container is missing or empty."""


class MalformedMarkup(ExtractError):
    """Raised when the HTML parser rejects the document."""


class InvalidChapterIndex(ChapterflowError, IndexError):
    """Raised when navigation targets a chapter outside the book."""

    def __init__(self, index: int, chapter_count: int) -> None:
        super().__init__(
            f"Chapter index {index} is out of range (book has {chapter_count} chapters)."
        )
        self.index = index
        self.chapter_count = chapter_count


__all__ = [
    "ChapterflowError",
    "ContentNotFound",
    "ExtractError",
    "InvalidChapterIndex",
    "MalformedMarkup",
    "NetworkError",
]
