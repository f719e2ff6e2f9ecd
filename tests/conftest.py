from __future__ import annotations

import threading
import time

import pytest

from chapterflow.errors import NetworkError
from chapterflow.measure import LineSpan
from chapterflow.models import LayoutParameters

BASE_URL = "https://www.bqgda.cc"
BOOK_URL = f"{BASE_URL}/book/7/"
CHAPTER_TITLES = ["第一章 出山", "第二章 下山", "第三章 进城", "第四章 夜宴", "第五章 归来"]
PARAGRAPHS_PER_CHAPTER = 5


def chapter_url(index: int) -> str:
    return f"{BASE_URL}/read/7/{index + 1}.html"


def chapter_html(index: int, paragraphs: int = PARAGRAPHS_PER_CHAPTER) -> str:
    body = "".join(f"<p>正文{index}-{n}</p>" for n in range(paragraphs))
    return (
        "<html><head><title>t</title></head><body>"
        f"<h1>{CHAPTER_TITLES[index]}</h1>"
        f'<div id="chaptercontent">{body}<p class="readinline">点此报错</p>请收藏本站：{BASE_URL}</div>'
        '<a id="pb_prev" href="/read/7/0.html">上一章</a><a id="pb_next" href="/books/7/2.html">下一章</a>'
        "</body></html>"
    )


def index_html(titles: list[str] | None = None) -> str:
    titles = CHAPTER_TITLES if titles is None else titles
    items = "".join(
        f'<dd><a href="/read/7/{idx + 1}.html">{title}</a></dd>' for idx, title in enumerate(titles)
    )
    return (
        "<html><body>"
        '<div class="info"><div class="cover"><img src="/cover/7.jpg"></div>'
        "<h1>山河志</h1>"
        '<div class="small"><span>作者：无名</span><span>状态：连载</span>'
        '<span class="last">更新：2024-05-01</span></div></div>'
        '<div class="intro"><dl><dd>一个人走出大山的故事。</dd></dl></div>'
        f'<div class="listmain"><dl>{items}'
        '<dd><a href="javascript:dd_show()">展开全部章节</a></dd></dl></div>'
        "</body></html>"
    )


class FakeFetcher:
    """Serves canned pages by URL; unknown URLs answer like a 404."""

    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = dict(pages)
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, threading.Event] = {}
        self.calls: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, url: str) -> bytes:
        with self._lock:
            self.calls.append(url)
        gate = self.gates.get(url)
        if gate is not None:
            gate.wait(timeout=5)
        failure = self.failures.get(url)
        if failure is not None:
            raise failure
        if url not in self.pages:
            raise NetworkError(f"GET {url} failed with status 404", url=url, status_code=404, retryable=False)
        return self.pages[url].encode("utf-8")

    def count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)

    def close(self) -> None:
        self.closed = True


class LineMeasurer:
    """One laid-out line per hard line; every line is ``height`` tall."""

    def __init__(self, height: float = 10.0) -> None:
        self.height = height

    def line_height(self, font) -> float:
        return self.height

    def break_lines(self, text: str, font, max_width: float) -> list[LineSpan]:
        spans: list[LineSpan] = []
        start = 0
        while start < len(text):
            newline = text.find("\n", start)
            end = len(text) if newline == -1 else newline + 1
            spans.append(LineSpan(start, end))
            start = end
        return spans


def bare_layout(height: float = 30.0, width: float = 300.0) -> LayoutParameters:
    """Layout without chrome or spacing: content box equals the viewport."""
    return LayoutParameters(
        viewport_width=width,
        viewport_height=height,
        line_spacing=0.0,
        header_reserved_height=0.0,
        footer_reserved_height=0.0,
        horizontal_padding=0.0,
        top_padding=0.0,
        bottom_padding=0.0,
        title_top_margin=0.0,
        title_bottom_margin=0.0,
    )


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def site_pages() -> dict[str, str]:
    pages = {BOOK_URL: index_html()}
    for idx in range(len(CHAPTER_TITLES)):
        pages[chapter_url(idx)] = chapter_html(idx)
    return pages


@pytest.fixture
def fetcher(site_pages) -> FakeFetcher:
    return FakeFetcher(site_pages)
