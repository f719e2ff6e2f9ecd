from .cache import ChapterCache
from .config import ReaderConfig, SiteProfile
from .errors import (
    ChapterflowError,
    ContentNotFound,
    ExtractError,
    InvalidChapterIndex,
    MalformedMarkup,
    NetworkError,
)
from .extract import extract, parse_book_info, parse_chapter_list
from .fetch import HttpFetcher, load_chapter_text, open_book
from .measure import MonospaceMeasurer, PillowMeasurer, TextMeasurer
from .models import Book, Chapter, FontDescriptor, LayoutParameters, Page, ReadingPosition
from .normalize import normalize
from .paginate import Paginator, paginate
from .session import EntryPoint, LoadState, ReadingSession, SessionEvent, SessionEventKind
from .storage import ReaderStore

__all__ = [
    "Book",
    "Chapter",
    "ChapterCache",
    "ChapterflowError",
    "ContentNotFound",
    "EntryPoint",
    "ExtractError",
    "FontDescriptor",
    "HttpFetcher",
    "InvalidChapterIndex",
    "LayoutParameters",
    "LoadState",
    "MalformedMarkup",
    "MonospaceMeasurer",
    "NetworkError",
    "Page",
    "Paginator",
    "PillowMeasurer",
    "ReaderConfig",
    "ReaderStore",
    "ReadingPosition",
    "ReadingSession",
    "SessionEvent",
    "SessionEventKind",
    "SiteProfile",
    "TextMeasurer",
    "extract",
    "load_chapter_text",
    "normalize",
    "open_book",
    "paginate",
    "parse_book_info",
    "parse_chapter_list",
]
