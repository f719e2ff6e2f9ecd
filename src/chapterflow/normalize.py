from __future__ import annotations

import re
import unicodedata
from typing import Iterable

PARAGRAPH_INDENT = "　　"
PARAGRAPH_SEPARATOR = "\n\n"
DEFAULT_NOISE_PHRASES = ("笔趣阁", "请收藏", "新书推荐")
# Titles shorter than this only match whole lines; a one-character title
# would otherwise knock out every line containing that character.
_MIN_TITLE_MATCH_LEN = 2

_SPACE_RUN_RE = re.compile(r" {2,}")
_NEWLINE_RUN_RE = re.compile(r"\n{4,}")


def _strip_punctuation(text: str) -> str:
    # Collapse all whitespace and punctuation; keep letters, digits and kanji.
    folded = unicodedata.normalize("NFKC", text).casefold()
    return "".join(
        ch
        for ch in folded
        if not unicodedata.category(ch).startswith(("P", "Z", "S"))
        and not ch.isspace()
    )


def is_title_echo(line: str, chapter_title: str) -> bool:
    """True when ``line`` is the chapter title leaking into the body."""
    title = (chapter_title or "").strip()
    if not title:
        return False
    if line == title:
        return True
    key = _strip_punctuation(title)
    if len(key) < _MIN_TITLE_MATCH_LEN:
        return False
    return key in _strip_punctuation(line)


def _keep_line(line: str, chapter_title: str, noise_phrases: Iterable[str]) -> bool:
    if not line:
        return False
    if is_title_echo(line, chapter_title):
        return False
    return not any(phrase and phrase in line for phrase in noise_phrases)


def normalize(
    extracted: str,
    chapter_title: str,
    *,
    noise_phrases: Iterable[str] = DEFAULT_NOISE_PHRASES,
) -> str:
    """
    Canonicalize extracted chapter text.

    Every surviving non-empty line becomes one paragraph prefixed with two
    ideographic spaces; paragraphs are joined by a blank line. Running the
    result through ``normalize`` again returns it unchanged.
    """
    phrases = tuple(noise_phrases)
    text = extracted.replace("\r\n", "\n").replace("\r", "\n")
    text = _NEWLINE_RUN_RE.sub("\n\n", text)
    paragraphs: list[str] = []
    for raw_line in text.split("\n"):
        line = _SPACE_RUN_RE.sub(" ", raw_line.strip())
        if not _keep_line(line, chapter_title, phrases):
            continue
        paragraphs.append(f"{PARAGRAPH_INDENT}{line}")
    return PARAGRAPH_SEPARATOR.join(paragraphs)


__all__ = [
    "DEFAULT_NOISE_PHRASES",
    "PARAGRAPH_INDENT",
    "PARAGRAPH_SEPARATOR",
    "is_title_echo",
    "normalize",
]
