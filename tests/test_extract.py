from __future__ import annotations

import uuid

import pytest

from chapterflow.config import SiteProfile
from chapterflow.errors import ContentNotFound
from chapterflow.extract import (
    cut_boilerplate_markers,
    decode_entities,
    extract,
    extract_navigation_links,
    markup_to_text,
    parse_book_info,
    parse_chapter_list,
)
from chapterflow.models import LayoutParameters
from chapterflow.normalize import normalize
from chapterflow.paginate import paginate

from conftest import BOOK_URL, chapter_html, chapter_url, index_html


def test_extract_then_normalize_simple_chapter() -> None:
    html = '<div id="content"><p>Hello</p><p>World</p>请收藏本站</div>'
    extracted = extract(html, "Ch1")
    assert extracted == "Hello\n\nWorld"
    assert normalize(extracted, "Ch1") == "　　Hello\n\n　　World"


def test_extract_prefers_first_configured_container() -> None:
    html = (
        '<div id="content">旧容器</div>'
        '<div id="chaptercontent">新容器</div>'
    )
    assert extract(html, "t") == "新容器"


def test_extract_removes_ads_and_scripts() -> None:
    html = (
        '<div id="chaptercontent">正文开始<br/>第二行'
        '<p class="readinline">点此报错</p><script>var ad = 1;</script>'
        '<div class="bottem">上一章 下一章</div></div>'
    )
    assert extract(html, "t") == "正文开始\n第二行"


def test_extract_decodes_escaped_markup_once() -> None:
    html = '<div id="content">1 &lt; 2 &amp;&amp; 3 &gt; 2</div>'
    assert extract(html, "t") == "1 < 2 && 3 > 2"


def test_extract_missing_container_raises() -> None:
    with pytest.raises(ContentNotFound):
        extract("<html><body><p>nothing here</p></body></html>", "t")


def test_extract_boilerplate_only_raises() -> None:
    with pytest.raises(ContentNotFound):
        extract('<div id="content">请收藏本站：https://www.bqgda.cc</div>', "t")


def test_extract_full_page_drops_trailer() -> None:
    text = extract(chapter_html(0), "第一章 出山")
    assert text.startswith("正文0-0")
    assert "请收藏" not in text
    assert "点此报错" not in text


def test_markup_to_text_turns_blocks_into_newlines() -> None:
    assert markup_to_text("a<br>b<BR />c<p class='x'>d</p><span>e</span>") == "a\nb\nc\nd\ne"


def test_decode_entities_table() -> None:
    assert decode_entities("&nbsp;&ldquo;hi&rdquo;&hellip;&#39;&quot;") == " “hi”…'\""
    assert decode_entities("&amp;lt;") == "&lt;"
    assert decode_entities("a\xa0b") == "a b"


def test_leading_recommendation_block_is_cut() -> None:
    text = "新书推荐：某某大作\n某某续集\n\n真正的正文\n下一行"
    assert cut_boilerplate_markers(text) == "真正的正文\n下一行"


def test_trailing_marker_cuts_rest() -> None:
    assert cut_boilerplate_markers("正文\n请收藏本站：网址\n更多") == "正文\n"


def test_markers_can_be_disabled() -> None:
    profile = SiteProfile(trailing_marker="", leading_marker="")
    text = "新书推荐：x\n\n正文请收藏本站"
    assert cut_boilerplate_markers(text, profile) == text


def test_parse_chapter_list_skips_placeholder() -> None:
    entries = parse_chapter_list(index_html(["第一章", "第二章"]))
    assert entries == [("第一章", chapter_url(0)), ("第二章", chapter_url(1))]


def test_parse_chapter_list_rewrites_legacy_links() -> None:
    html = '<div class="listmain"><dl><dd><a href="/books/9/3.html">第三章</a></dd></dl></div>'
    assert parse_chapter_list(html) == [("第三章", "https://www.bqgda.cc/read/9/3.html")]


def test_parse_book_info_reads_metadata() -> None:
    book = parse_book_info(index_html(), BOOK_URL)
    assert book.title == "山河志"
    assert book.author == "作者：无名"
    assert book.status == "状态：连载"
    assert book.last_updated == "更新：2024-05-01"
    assert book.introduction == "一个人走出大山的故事。"
    assert book.cover_url == "/cover/7.jpg"
    assert [chapter.ordinal_index for chapter in book.chapters] == [0, 1, 2, 3, 4]
    assert book.id == uuid.uuid5(uuid.NAMESPACE_URL, BOOK_URL).hex


def test_parse_book_info_without_title_raises() -> None:
    with pytest.raises(ContentNotFound):
        parse_book_info("<html><body></body></html>", BOOK_URL)


def test_parse_book_info_defaults_author() -> None:
    book = parse_book_info('<div class="info"><h1>孤本</h1></div>', BOOK_URL)
    assert book.author == "Unknown Author"
    assert book.chapters == []


def test_navigation_links_are_resolved() -> None:
    prev_link, next_link = extract_navigation_links(chapter_html(1))
    assert prev_link == "https://www.bqgda.cc/read/7/0.html"
    assert next_link == "https://www.bqgda.cc/read/7/2.html"


def test_navigation_links_missing() -> None:
    assert extract_navigation_links("<div id='content'>x</div>") == (None, None)


def test_short_chapter_fits_one_page() -> None:
    text = normalize(extract('<div id="content"><p>Hello</p><p>World</p>请收藏本站</div>', "Ch1"), "Ch1")
    pages = paginate(text, LayoutParameters(viewport_width=390, viewport_height=844), "Ch1")
    assert len(pages) == 1
    assert pages[0].text == "　　Hello\n\n　　World"
