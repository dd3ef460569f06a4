"""
DB utilities (sqlite default).

Defaults:
- DATABASE_URL: sqlite:///./data/app.db

Engines are built per application (create_app) and passed down; nothing here
holds a process-wide handle.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine


def _repo_root() -> Path:
    # apps/api/charforge/core/db.py -> repo root = parents[4]
    return Path(__file__).resolve().parents[4]


def resolve_sqlite_path(database_url: str) -> Optional[Path]:
    if not database_url.startswith("sqlite:///"):
        return None
    p = database_url[len("sqlite:///") :]

    # in-memory
    if p in ("", ":memory:"):
        return None

    # absolute unix
    if p.startswith("/"):
        return Path(p)

    # absolute windows drive, both C:/ and C:\ forms
    if len(p) >= 3 and p[1] == ":" and (p[2] == "/" or p[2] == "\\"):
        return Path(p)

    # relative -> repo root
    return (_repo_root() / p).resolve()


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _register_sqlite_functions(dbapi_conn: Any, _record: Any) -> None:
    # sqlite lower() only folds ASCII; search folds both sides with str.casefold
    dbapi_conn.create_function("casefold", 1, _casefold, deterministic=True)


def make_engine(database_url: str) -> Engine:
    url = database_url
    connect_args = {}
    if url.startswith("sqlite:"):
        connect_args = {"check_same_thread": False}

    sp = resolve_sqlite_path(url)
    if sp is not None:
        sp.parent.mkdir(parents=True, exist_ok=True)
        url = "sqlite:///" + sp.as_posix()

    engine = create_engine(url, connect_args=connect_args)
    if url.startswith("sqlite:"):
        event.listen(engine, "connect", _register_sqlite_functions)
    return engine


def init_db(engine: Engine) -> None:
    """Create missing tables (dev/test); production schemas come from alembic."""
    # table modules must be imported so their metadata is registered
    from charforge.modules.characters import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def db_health(engine: Engine, database_url: str) -> Dict[str, Any]:
    kind = "sqlite" if database_url.startswith("sqlite") else "unknown"
    sp = resolve_sqlite_path(database_url)
    path = str(sp.as_posix()) if sp is not None else database_url

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "kind": kind, "path": path}
    except Exception as e:
        return {"status": "error", "kind": kind, "path": path, "error": str(e)}
