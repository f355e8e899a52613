"""Structured JSON logging scoped per comparable search.

Every log line emitted while a search runs carries the same `search_id`
(taken from a ContextVar), so one search can be followed end to end across
selector, scorer and learning store. Outside a search the field is absent.

NOTAS:
  - Em debug (settings.debug) o output é texto legível em vez de JSON
  - Atributos extra (tier, strategy, candidates, ...) passam para o payload JSON
"""
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

from app.config import settings

_search_id: ContextVar[Optional[str]] = ContextVar("search_id", default=None)

# Record attributes copied into the JSON payload when a log call passes them in `extra`
CONTEXT_FIELDS = (
    "subject_id",
    "tier",
    "strategy",
    "pass_name",
    "candidates",
    "index_version",
    "duration",
)

_QUIET_LOGGERS = ("sqlalchemy.engine", "httpcore", "httpx", "uvicorn.access", "aiosqlite")


def current_search_id() -> Optional[str]:
    return _search_id.get()


@contextmanager
def search_scope(search_id: Optional[str] = None) -> Iterator[str]:
    """Bind a search id to the current context for the duration of one search."""
    sid = search_id or uuid.uuid4().hex[:12]
    token = _search_id.set(sid)
    try:
        yield sid
    finally:
        _search_id.reset(token)


class SearchContextFilter(logging.Filter):
    """Stamp the active search id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "search_id"):
            record.search_id = _search_id.get()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        search_id = getattr(record, "search_id", None)
        if search_id:
            entry["search_id"] = search_id
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, at application startup."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SearchContextFilter())
    if settings.debug:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s [%(search_id)s] %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
