from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

DEFAULT_BASE_URL = "https://www.bqgda.cc"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148"
)
MIN_FONT_SIZE = 16.0
MAX_FONT_SIZE = 30.0
DEFAULT_FONT_SIZE = 20.0
_MAX_FETCH_WORKERS = 8


@dataclass(frozen=True)
class SiteProfile:
    """Selectors and marker phrases for one content site."""

    base_url: str = DEFAULT_BASE_URL
    content_selectors: tuple[str, ...] = ("div#chaptercontent", "div#content")
    boilerplate_selectors: tuple[str, ...] = (
        "p.readinline",
        "div.content_detail",
        "div.bottem",
        "script",
        "style",
    )
    trailing_marker: str = "请收藏本站"
    leading_marker: str = "新书推荐："
    noise_phrases: tuple[str, ...] = ("笔趣阁", "请收藏", "新书推荐")
    toc_selector: str = ".listmain dd a"
    expand_placeholder: str = "展开全部章节"
    title_selector: str = "div.info h1"
    meta_selector: str = ".info .small span"
    last_updated_selector: str = ".info .small span.last"
    cover_selector: str = ".info .cover img"
    introduction_selector: str = ".intro dl dd"
    prev_link_selector: str = "a#pb_prev"
    next_link_selector: str = "a#pb_next"
    chapter_path_prefix: str = "/read"
    legacy_path_prefix: str = "/books"

    @property
    def domain(self) -> str:
        return urlparse(self.base_url).netloc

    def resolve_link(self, href: str) -> str:
        """Return an absolute link on this site for a scraped ``href``."""
        link = (href or "").strip()
        if not link:
            return ""
        absolute = urljoin(self.base_url.rstrip("/") + "/", link)
        parsed = urlparse(absolute)
        path = parsed.path
        legacy = self.legacy_path_prefix.rstrip("/") + "/"
        if legacy != "/" and path.startswith(legacy):
            path = self.chapter_path_prefix.rstrip("/") + "/" + path[len(legacy):]
        doubled = self.chapter_path_prefix.rstrip("/") * 2 + "/"
        if path.startswith(doubled):
            path = path[len(self.chapter_path_prefix.rstrip("/")):]
        netloc = parsed.netloc
        scheme = parsed.scheme
        if self.domain and netloc != self.domain:
            netloc = self.domain
            scheme = urlparse(self.base_url).scheme or scheme
        rebuilt = parsed._replace(scheme=scheme, netloc=netloc, path=path)
        return rebuilt.geturl()

    def is_placeholder_title(self, title: str) -> bool:
        return bool(self.expand_placeholder) and self.expand_placeholder in (title or "")


def _env_int(name: str, fallback: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if not raw:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        return fallback
    if parsed < minimum:
        return fallback
    return parsed


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return fallback
    try:
        parsed = float(raw)
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


def _env_bool(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return fallback


@dataclass(slots=True)
class ReaderConfig:
    fetch_timeout: float = 20.0
    user_agent: str = DEFAULT_USER_AGENT
    preload_ahead: int = 2
    preload_behind: int = 1
    auto_preload: bool = True
    fetch_workers: int = 2
    restore_progress: bool = True
    history_limit: int = 20
    site: SiteProfile = field(default_factory=SiteProfile)

    def __post_init__(self) -> None:
        self.fetch_workers = max(1, min(self.fetch_workers, _MAX_FETCH_WORKERS))
        self.preload_ahead = max(0, self.preload_ahead)
        self.preload_behind = max(0, self.preload_behind)

    @classmethod
    def from_env(cls, **overrides: object) -> "ReaderConfig":
        defaults = cls()
        values: dict[str, object] = {
            "fetch_timeout": _env_float("CHAPTERFLOW_FETCH_TIMEOUT", defaults.fetch_timeout),
            "preload_ahead": _env_int("CHAPTERFLOW_PRELOAD_AHEAD", defaults.preload_ahead),
            "preload_behind": _env_int("CHAPTERFLOW_PRELOAD_BEHIND", defaults.preload_behind),
            "auto_preload": _env_bool("CHAPTERFLOW_AUTO_PRELOAD", defaults.auto_preload),
            "fetch_workers": _env_int("CHAPTERFLOW_FETCH_WORKERS", defaults.fetch_workers, minimum=1),
        }
        base_url = os.getenv("CHAPTERFLOW_BASE_URL")
        if base_url:
            values["site"] = SiteProfile(base_url=base_url.strip())
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


def clamp_font_size(size: float) -> float:
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, float(size)))


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_FONT_SIZE",
    "MAX_FONT_SIZE",
    "MIN_FONT_SIZE",
    "ReaderConfig",
    "SiteProfile",
    "clamp_font_size",
]
