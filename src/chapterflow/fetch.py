from __future__ import annotations

from typing import Protocol
from urllib.parse import urlparse

import requests

from .config import ReaderConfig, SiteProfile
from .errors import NetworkError
from .extract import extract, parse_book_info
from .logging_utils import debug_log
from .models import Book, Chapter
from .normalize import normalize


class ChapterFetcher(Protocol):
    def fetch(self, url: str) -> bytes:
        ...


class HttpFetcher:
    """Blocking page fetcher over a shared ``requests.Session``.

    Every call is bounded by ``timeout`` seconds; all transport problems come
    back as ``NetworkError``.
    """

    def __init__(
        self,
        timeout: float = 20.0,
        *,
        user_agent: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        if user_agent:
            self._session.headers["User-Agent"] = user_agent

    @classmethod
    def from_config(cls, config: ReaderConfig) -> "HttpFetcher":
        return cls(config.fetch_timeout, user_agent=config.user_agent)

    def fetch(self, url: str) -> bytes:
        parsed = urlparse(url or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise NetworkError(f"Invalid URL: {url!r}", url=url, retryable=False)
        debug_log(f"GET {url}")
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise NetworkError(
                f"Timed out after {self.timeout:.0f}s fetching {url}", url=url
            ) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch {url}: {exc}", url=url) from exc
        if not 200 <= resp.status_code < 300:
            raise NetworkError(
                f"GET {url} failed with status {resp.status_code}",
                url=url,
                status_code=resp.status_code,
                retryable=resp.status_code >= 500 or resp.status_code == 429,
            )
        return resp.content

    def close(self) -> None:
        self._session.close()


def decode_html(data: bytes, url: str | None = None) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise NetworkError(
            f"Response from {url or 'source'} is not valid UTF-8", url=url, retryable=False
        ) from exc


def load_chapter_text(
    fetcher: ChapterFetcher,
    chapter: Chapter,
    profile: SiteProfile | None = None,
) -> str:
    """Fetch one chapter page and return its normalized text."""
    profile = profile or SiteProfile()
    html = decode_html(fetcher.fetch(chapter.source_link), chapter.source_link)
    extracted = extract(html, chapter.title, profile)
    return normalize(extracted, chapter.title, noise_phrases=profile.noise_phrases)


def open_book(
    fetcher: ChapterFetcher,
    book_url: str,
    profile: SiteProfile | None = None,
) -> Book:
    """Fetch a book's index page and parse its metadata and chapter list."""
    profile = profile or SiteProfile()
    html = decode_html(fetcher.fetch(book_url), book_url)
    book = parse_book_info(html, book_url, profile)
    debug_log(f"opened {book.title!r} with {len(book.chapters)} chapters")
    return book


def refresh_chapters(
    fetcher: ChapterFetcher,
    book: Book,
    profile: SiteProfile | None = None,
) -> Book:
    """Replace ``book.chapters`` wholesale from its index page."""
    fresh = open_book(fetcher, book.source_link, profile)
    book.chapters = fresh.chapters
    return book


__all__ = [
    "ChapterFetcher",
    "HttpFetcher",
    "decode_html",
    "load_chapter_text",
    "open_book",
    "refresh_chapters",
]
