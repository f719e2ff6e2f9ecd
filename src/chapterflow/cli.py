from __future__ import annotations

import argparse
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import DEFAULT_FONT_SIZE, ReaderConfig, clamp_font_size
from .errors import ChapterflowError
from .extract import extract
from .fetch import HttpFetcher, open_book
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .measure import MonospaceMeasurer, PillowMeasurer, TextMeasurer
from .models import FontDescriptor, LayoutParameters
from .normalize import normalize
from .session import LoadState, ReadingSession
from .storage import DEFAULT_FONT_FAMILY
from .web import WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("chapterflow")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"chapterflow {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (fetches, cache window, pagination).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterflow",
        description="Fetch, clean and paginate web novel chapters. Subcommands: extract, toc, read, web.",
    )
    _add_common_flags(ap)
    return ap


def build_extract_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterflow extract",
        description="Extract and normalize the text of a saved chapter page.",
    )
    _add_common_flags(ap)
    ap.add_argument("input_path", help="Path to a saved chapter .html file.")
    ap.add_argument(
        "--title",
        default="",
        help="Chapter title; lines repeating it are dropped from the body.",
    )
    return ap


def build_toc_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterflow toc",
        description="List the chapters of a book index page.",
    )
    _add_common_flags(ap)
    ap.add_argument("url", help="Book index URL.")
    return ap


def build_read_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterflow read",
        description="Open a book, paginate one chapter and print a page.",
    )
    _add_common_flags(ap)
    ap.add_argument("url", help="Book index URL.")
    ap.add_argument("--chapter", type=int, default=0, help="Chapter index (default: 0).")
    ap.add_argument("--page", type=int, default=0, help="Page index, clamped to the chapter (default: 0).")
    ap.add_argument("--width", type=float, default=390.0, help="Viewport width in points (default: 390).")
    ap.add_argument("--height", type=float, default=844.0, help="Viewport height in points (default: 844).")
    ap.add_argument(
        "--font-size",
        type=float,
        default=DEFAULT_FONT_SIZE,
        help="Body font size, clamped to 16..30 (default: 20).",
    )
    ap.add_argument(
        "--font-path",
        help="Optional .ttf/.otf/.ttc used for measuring (requires Pillow).",
    )
    ap.add_argument("--all", action="store_true", help="Print every page of the chapter.")
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterflow web",
        description="Serve the reading session over a small JSON API.",
    )
    _add_common_flags(ap)
    ap.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host interface for the web server (default: 0.0.0.0).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    ap.add_argument(
        "--state-dir",
        default="~/.chapterflow",
        help="Directory holding reading positions, history and bookmarks (default: ~/.chapterflow).",
    )
    return ap


def _build_measurer(font_path: str | None) -> TextMeasurer:
    if not font_path:
        return MonospaceMeasurer()
    path = Path(font_path).expanduser()
    if not path.exists():
        raise SystemExit(f"Font file not found: {path}")
    try:
        return PillowMeasurer({DEFAULT_FONT_FAMILY: path})
    except ImportError as exc:
        raise SystemExit("Pillow is required for --font-path.") from exc


def _run_extract(args: argparse.Namespace) -> int:
    path = Path(args.input_path)
    if not path.exists():
        raise FileNotFoundError(f"Input path not found: {path}")
    config = ReaderConfig.from_env()
    raw = path.read_text(encoding="utf-8", errors="replace")
    try:
        text = extract(raw, args.title, config.site)
    except ChapterflowError as exc:
        raise SystemExit(str(exc)) from exc
    print(normalize(text, args.title, noise_phrases=config.site.noise_phrases))
    return 0


def _run_toc(args: argparse.Namespace) -> int:
    config = ReaderConfig.from_env()
    fetcher = HttpFetcher.from_config(config)
    try:
        book = open_book(fetcher, args.url, config.site)
    except ChapterflowError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        fetcher.close()
    console = Console()
    table = Table(title=f"{book.title} / {book.author}")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Link", overflow="fold")
    for chapter in book.chapters:
        table.add_row(str(chapter.ordinal_index), chapter.title, chapter.source_link)
    console.print(table)
    return 0


def _run_read(args: argparse.Namespace) -> int:
    if args.width <= 0 or args.height <= 0:
        raise SystemExit("--width and --height must be positive.")
    config = ReaderConfig.from_env(auto_preload=False, restore_progress=False)
    fetcher = HttpFetcher.from_config(config)
    measurer = _build_measurer(args.font_path)
    try:
        book = open_book(fetcher, args.url, config.site)
    except ChapterflowError as exc:
        fetcher.close()
        raise SystemExit(str(exc)) from exc
    layout = LayoutParameters(
        viewport_width=args.width,
        viewport_height=args.height,
        font=FontDescriptor(DEFAULT_FONT_FAMILY, clamp_font_size(args.font_size)),
    )
    session = ReadingSession(book, layout, fetcher=fetcher, config=config, measurer=measurer)
    try:
        try:
            session.load_chapter(args.chapter).result()
        except ChapterflowError as exc:
            raise SystemExit(str(exc)) from exc
        if session.state is LoadState.ERROR:
            raise SystemExit(session.error_message or "Chapter failed to load.")
        console = Console()
        pages = session.pages()
        if args.all:
            selected = pages
        else:
            target = max(0, min(args.page, len(pages) - 1))
            selected = pages[target : target + 1]
        for page in selected:
            console.print(
                Panel(
                    page.text,
                    title=session.chapter_title if page.index == 0 else None,
                    subtitle=f"{page.index + 1}/{len(pages)}",
                )
            )
    finally:
        session.close()
        fetcher.close()
    return 0


def _run_web(args: argparse.Namespace) -> None:
    state_dir = Path(args.state_dir).expanduser().resolve()
    config = WebConfig(state_dir=state_dir, reader=ReaderConfig.from_env())
    app = create_app(config)
    public_ip = _resolve_local_ip(args.host)
    url = f"http://{public_ip}:{args.port}/"
    print(f"Serving chapterflow with state in {state_dir}")
    print(f"API URL: {url}api/session")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
        log_config=build_uvicorn_log_config(),
    )


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "extract":
        extract_args = build_extract_parser().parse_args(argv[1:])
        set_debug_logging(extract_args.debug)
        return _run_extract(extract_args)
    if argv and argv[0] == "toc":
        toc_args = build_toc_parser().parse_args(argv[1:])
        set_debug_logging(toc_args.debug)
        return _run_toc(toc_args)
    if argv and argv[0] == "read":
        read_args = build_read_parser().parse_args(argv[1:])
        set_debug_logging(read_args.debug)
        return _run_read(read_args)
    if argv and argv[0] == "web":
        web_args = build_web_parser().parse_args(argv[1:])
        set_debug_logging(web_args.debug)
        _run_web(web_args)
        return 0

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"Unknown command: {argv[0]}")
    return 2


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


if __name__ == "__main__":
    raise SystemExit(main())
