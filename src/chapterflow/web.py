from __future__ import annotations

import contextlib
import threading
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass, field, replace
from pathlib import Path

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .config import ReaderConfig, clamp_font_size
from .errors import ExtractError, InvalidChapterIndex, NetworkError
from .fetch import ChapterFetcher, HttpFetcher, open_book
from .measure import TextMeasurer
from .models import FontDescriptor, LayoutParameters
from .session import ReadingSession
from .storage import ReaderStore


@dataclass(slots=True)
class WebConfig:
    state_dir: Path
    viewport_width: float = 390.0
    viewport_height: float = 844.0
    reader: ReaderConfig = field(default_factory=ReaderConfig)

    @property
    def wait_timeout(self) -> float:
        return self.reader.fetch_timeout + 10.0


_NAVIGATION_ACTIONS = {
    "next-page": ReadingSession.next_page,
    "previous-page": ReadingSession.previous_page,
    "next-chapter": ReadingSession.next_chapter,
    "previous-chapter": ReadingSession.previous_chapter,
}


def _bookmark_payload(store: ReaderStore, book_id: str) -> dict[str, object]:
    return {
        "bookmarks": [
            {
                "id": mark.id,
                "chapter_index": mark.chapter_index,
                "page_index": mark.page_index,
                "label": mark.label,
                "created_at": mark.created_at,
            }
            for mark in store.list_bookmarks(book_id)
        ]
    }


def create_app(
    config: WebConfig,
    *,
    fetcher: ChapterFetcher | None = None,
    measurer: TextMeasurer | None = None,
) -> FastAPI:
    state_dir = config.state_dir.expanduser()
    store = ReaderStore(state_dir, history_limit=config.reader.history_limit)
    source = fetcher or HttpFetcher.from_config(config.reader)
    holder: dict[str, ReadingSession] = {}
    holder_lock = threading.Lock()

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        with holder_lock:
            session = holder.pop("session", None)
        if session is not None:
            session.close()

    app = FastAPI(title="chapterflow", lifespan=lifespan)
    app.state.config = config
    app.state.store = store

    def _session() -> ReadingSession:
        with holder_lock:
            session = holder.get("session")
        if session is None:
            raise HTTPException(status_code=409, detail="No book is open.")
        return session

    def _settle(future: Future | None) -> None:
        if future is None:
            return
        try:
            future.result(timeout=config.wait_timeout)
        except (CancelledError, TimeoutError):
            # Superseded or still running; the snapshot shows the current state.
            pass

    def _session_payload(session: ReadingSession) -> JSONResponse:
        return JSONResponse(session.snapshot())

    @app.post("/api/open")
    def api_open(payload: dict[str, object] = Body(...)) -> JSONResponse:
        url = payload.get("url") if isinstance(payload, dict) else None
        if not isinstance(url, str) or not url.strip():
            raise HTTPException(status_code=400, detail="url is required.")
        try:
            book = open_book(source, url.strip(), config.reader.site)
        except NetworkError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ExtractError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        prefs = store.load_preferences()
        layout = LayoutParameters(
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            font=FontDescriptor(prefs.font_family, prefs.font_size),
        )
        session = ReadingSession(
            book,
            layout,
            fetcher=source,
            config=config.reader,
            measurer=measurer,
            store=store,
        )
        with holder_lock:
            previous = holder.get("session")
            holder["session"] = session
        if previous is not None:
            previous.close()
        if book.chapters:
            _settle(session.open())
        return JSONResponse({"book": book.to_payload(), "session": session.snapshot()})

    @app.get("/api/session")
    def api_session() -> JSONResponse:
        return _session_payload(_session())

    @app.get("/api/pages")
    def api_pages() -> JSONResponse:
        session = _session()
        return JSONResponse({"pages": session.current_pages(), "page_index": session.current_page_index})

    @app.get("/api/chapters")
    def api_chapters() -> JSONResponse:
        session = _session()
        return JSONResponse(
            {
                "chapters": [
                    {"index": chapter.ordinal_index, "title": chapter.title, "link": chapter.source_link}
                    for chapter in session.book.chapters
                ]
            }
        )

    @app.post("/api/chapters/{index}")
    def api_load_chapter(index: int) -> JSONResponse:
        session = _session()
        try:
            future = session.load_chapter(index)
        except InvalidChapterIndex as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        _settle(future)
        return _session_payload(session)

    @app.post("/api/retry")
    def api_retry() -> JSONResponse:
        session = _session()
        _settle(session.retry_load_current_chapter())
        return _session_payload(session)

    @app.post("/api/navigate/{action}")
    def api_navigate(action: str) -> JSONResponse:
        handler = _NAVIGATION_ACTIONS.get(action)
        if handler is None:
            raise HTTPException(status_code=404, detail=f"Unknown action: {action}")
        session = _session()
        _settle(handler(session))
        return _session_payload(session)

    @app.post("/api/progress")
    def api_progress(payload: dict[str, object] = Body(...)) -> JSONResponse:
        fraction = payload.get("fraction") if isinstance(payload, dict) else None
        if not isinstance(fraction, (int, float)) or not 0 <= fraction <= 1:
            raise HTTPException(status_code=400, detail="fraction must be between 0 and 1.")
        session = _session()
        session.jump_to_progress(float(fraction))
        return _session_payload(session)

    @app.post("/api/layout")
    def api_layout(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        session = _session()
        layout = session.layout
        width = payload.get("width", layout.viewport_width)
        height = payload.get("height", layout.viewport_height)
        if not isinstance(width, (int, float)) or not isinstance(height, (int, float)):
            raise HTTPException(status_code=400, detail="width and height must be numbers.")
        if width <= 0 or height <= 0:
            raise HTTPException(status_code=400, detail="width and height must be positive.")
        font = layout.font
        size = payload.get("font_size")
        if size is not None:
            if not isinstance(size, (int, float)):
                raise HTTPException(status_code=400, detail="font_size must be a number.")
            font = replace(font, point_size=clamp_font_size(size))
        family = payload.get("font_family")
        if family is not None:
            if not isinstance(family, str) or not family.strip():
                raise HTTPException(status_code=400, detail="font_family must be a string.")
            font = replace(font, family=family.strip())
        if font != layout.font:
            store.update_preferences(font_family=font.family, font_size=font.point_size)
        _settle(session.set_layout(replace(layout.with_viewport(width, height), font=font)))
        return _session_payload(session)

    @app.get("/api/bookmarks")
    def api_bookmarks() -> JSONResponse:
        session = _session()
        return JSONResponse(_bookmark_payload(store, session.book.id))

    @app.post("/api/bookmarks")
    def api_add_bookmark(payload: dict[str, object] = Body(default={})) -> JSONResponse:
        session = _session()
        label = payload.get("label") if isinstance(payload, dict) else None
        if label is not None and not isinstance(label, str):
            raise HTTPException(status_code=400, detail="label must be a string or null.")
        store.add_bookmark(session.book.id, session.position, label)
        return JSONResponse(_bookmark_payload(store, session.book.id))

    @app.delete("/api/bookmarks/{bookmark_id}")
    def api_delete_bookmark(bookmark_id: str) -> JSONResponse:
        session = _session()
        if not store.remove_bookmark(session.book.id, bookmark_id):
            raise HTTPException(status_code=404, detail="Bookmark not found.")
        return JSONResponse(_bookmark_payload(store, session.book.id))

    @app.get("/api/history")
    def api_history() -> JSONResponse:
        return JSONResponse(
            {
                "history": [
                    {
                        "book_id": record.book_id,
                        "title": record.title,
                        "author": record.author,
                        "source_link": record.source_link,
                        "last_chapter": record.last_chapter,
                        "last_read": record.last_read,
                    }
                    for record in store.reading_history()
                ]
            }
        )

    return app


__all__ = ["WebConfig", "create_app"]
