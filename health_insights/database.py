"""SQL engine for chat persistence.

One engine is shared per process and built lazily from ``DATABASE_URL``.
Relative SQLite paths are anchored at the project root so the database does
not move with the working directory.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import URL, Engine, make_url
from sqlmodel import SQLModel, create_engine

from . import config as config_module
from .config import PROJECT_ROOT

_engine: Engine | None = None


def _anchor_sqlite_file(url: URL) -> URL:
    database = url.database
    if not database or database == ":memory:":
        return url
    path = Path(database)
    if not path.is_absolute():
        path = (PROJECT_ROOT / path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return url.set(database=str(path))


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = make_url(config_module.get_settings().database_url)
        connect_args: dict[str, object] = {}
        if url.get_backend_name() == "sqlite":
            # Request handlers and the worker pool share the engine across threads.
            connect_args["check_same_thread"] = False
            url = _anchor_sqlite_file(url)
        _engine = create_engine(url, connect_args=connect_args)
    return _engine


def init_db() -> None:
    """Create the ``chats`` table if it does not exist yet."""

    from .models import chat  # noqa: F401

    SQLModel.metadata.create_all(get_engine())


def reset_database_state() -> None:
    """Dispose of the shared engine so the next call rebuilds it from settings."""

    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
