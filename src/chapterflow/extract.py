from __future__ import annotations

import re
import uuid
import warnings

from bs4 import BeautifulSoup, FeatureNotFound, Tag, XMLParsedAsHTMLWarning

from .config import SiteProfile
from .errors import ContentNotFound, MalformedMarkup
from .logging_utils import debug_log
from .models import Book

DEFAULT_PROFILE = SiteProfile()

# Applied after tags are stripped. ``&amp;`` stays last so escaped entities
# such as ``&amp;lt;`` decode exactly once.
HTML_ENTITY_TABLE: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("\xa0", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&ldquo;", "“"),
    ("&rdquo;", "”"),
    ("&hellip;", "…"),
    ("&amp;", "&"),
)

_BR_RE = re.compile(r"<\s*br\b[^>]*>", re.IGNORECASE)
_BLOCK_RE = re.compile(r"<\s*/?\s*(?:p|div)(?:\s[^>]*)?/?\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_TRAILING_WS_RE = re.compile(r"[ \t]+\n")


def _soup_from_html(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
        except Exception as exc:
            raise MalformedMarkup(f"Failed to parse HTML: {exc}") from exc
    raise MalformedMarkup("No HTML parser available; install lxml.")


def _select_container(soup: BeautifulSoup, profile: SiteProfile) -> Tag | None:
    for selector in profile.content_selectors:
        try:
            found = soup.select_one(selector)
        except Exception as exc:
            raise MalformedMarkup(f"Invalid content selector {selector!r}: {exc}") from exc
        if found is not None:
            return found
    return None


def markup_to_text(markup: str) -> str:
    """Turn block-level tags into line breaks and drop every other tag."""
    text = _BR_RE.sub("\n", markup)
    text = _BLOCK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    return text


def decode_entities(text: str) -> str:
    for entity, replacement in HTML_ENTITY_TABLE:
        text = text.replace(entity, replacement)
    return text


def cut_boilerplate_markers(text: str, profile: SiteProfile = DEFAULT_PROFILE) -> str:
    """Drop the leading recommendation block and everything after the bookmark plea."""
    if profile.leading_marker:
        start = text.find(profile.leading_marker)
        if start != -1:
            end = text.find("\n\n", start + len(profile.leading_marker))
            if end != -1:
                text = text[end + 2 :]
    if profile.trailing_marker:
        cut = text.find(profile.trailing_marker)
        if cut != -1:
            text = text[:cut]
    return text


def extract(
    raw_html: str,
    chapter_title: str,
    profile: SiteProfile = DEFAULT_PROFILE,
) -> str:
    """
    Pull the chapter body out of a content page.

    The container is located by ``profile.content_selectors`` (first match
    wins). Ads, footers and scripts listed in ``profile.boilerplate_selectors``
    are removed before the inner markup is flattened to text. Raises
    ``ContentNotFound`` when nothing readable remains.
    """
    soup = _soup_from_html(raw_html)
    container = _select_container(soup, profile)
    if container is None:
        raise ContentNotFound(f"Chapter body not found for {chapter_title!r}.")
    for selector in profile.boilerplate_selectors:
        for node in container.select(selector):
            node.decompose()
    markup = container.decode_contents()
    text = markup_to_text(markup)
    text = decode_entities(text)
    text = cut_boilerplate_markers(text, profile)
    text = _TRAILING_WS_RE.sub("\n", text).strip()
    if not text:
        raise ContentNotFound(f"Chapter body for {chapter_title!r} is empty after cleanup.")
    debug_log(f"extracted {len(text)} chars for {chapter_title!r}")
    return text


def extract_navigation_links(
    raw_html: str,
    profile: SiteProfile = DEFAULT_PROFILE,
) -> tuple[str | None, str | None]:
    soup = _soup_from_html(raw_html)
    links: list[str | None] = []
    for selector in (profile.prev_link_selector, profile.next_link_selector):
        anchor = soup.select_one(selector)
        href = anchor.get("href") if anchor is not None else None
        if isinstance(href, str) and href.strip():
            links.append(profile.resolve_link(href))
        else:
            links.append(None)
    return links[0], links[1]


def parse_chapter_list(
    raw_html: str,
    profile: SiteProfile = DEFAULT_PROFILE,
) -> list[tuple[str, str]]:
    """Return ``(title, absolute_link)`` pairs in table-of-contents order."""
    soup = _soup_from_html(raw_html)
    entries: list[tuple[str, str]] = []
    for anchor in soup.select(profile.toc_selector):
        title = anchor.get_text(strip=True)
        if profile.is_placeholder_title(title):
            continue
        href = anchor.get("href")
        if not isinstance(href, str) or not href.strip():
            continue
        entries.append((title, profile.resolve_link(href)))
    return entries


def _first_text(soup: BeautifulSoup, selector: str) -> str | None:
    node = soup.select_one(selector)
    if node is None:
        return None
    text = node.get_text(strip=True)
    return text or None


def parse_book_info(
    raw_html: str,
    book_url: str,
    profile: SiteProfile = DEFAULT_PROFILE,
) -> Book:
    soup = _soup_from_html(raw_html)
    title = _first_text(soup, profile.title_selector)
    if not title:
        raise ContentNotFound(f"Book title not found at {book_url}.")
    meta = [node.get_text(strip=True) for node in soup.select(profile.meta_selector)]
    cover = soup.select_one(profile.cover_selector)
    cover_src = cover.get("src") if cover is not None else None
    book = Book(
        title=title,
        author=meta[0] if meta and meta[0] else "Unknown Author",
        source_link=book_url,
        id=uuid.uuid5(uuid.NAMESPACE_URL, book_url).hex,
        cover_url=cover_src if isinstance(cover_src, str) and cover_src else None,
        status=meta[1] if len(meta) > 1 else None,
        last_updated=_first_text(soup, profile.last_updated_selector),
        introduction=_first_text(soup, profile.introduction_selector),
    )
    book.replace_chapters(parse_chapter_list(raw_html, profile))
    return book


__all__ = [
    "DEFAULT_PROFILE",
    "HTML_ENTITY_TABLE",
    "cut_boilerplate_markers",
    "decode_entities",
    "extract",
    "extract_navigation_links",
    "markup_to_text",
    "parse_book_info",
    "parse_chapter_list",
]
