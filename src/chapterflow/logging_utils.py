from __future__ import annotations

from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from rich.console import Console
from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

_DEBUG_LOG = False
_CONSOLE = Console(stderr=True, highlight=False, soft_wrap=True)


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        _CONSOLE.print(f"[chapterflow debug] {message}", markup=False)


def warn_log(message: str) -> None:
    _CONSOLE.print(f"[chapterflow] {message}", markup=False, style="yellow")


def _decode_path(value: str) -> str:
    try:
        return unquote(value, encoding="utf-8", errors="replace")
    except Exception:
        return value


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Uvicorn access log formatter that prints decoded UTF-8 paths."""

    def formatMessage(self, record):  # type: ignore[override]
        try:
            client_addr, method, full_path, http_version, status_code = record.args
        except Exception:
            return super().formatMessage(record)
        decoded_path = _decode_path(full_path) if isinstance(full_path, str) else full_path
        new_record = copy(record)
        new_record.args = (client_addr, method, decoded_path, http_version, status_code)
        return super().formatMessage(new_record)


def build_uvicorn_log_config() -> dict[str, Any]:
    """Return a uvicorn logging config that uses Utf8AccessFormatter."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "chapterflow.logging_utils.Utf8AccessFormatter"
    return config


__all__ = [
    "Utf8AccessFormatter",
    "build_uvicorn_log_config",
    "debug_enabled",
    "debug_log",
    "set_debug_logging",
    "warn_log",
]
