from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from marketplace_jobs.config.settings import DEFAULT_DB_URL


def get_db_url() -> str:
    return os.getenv("MARKETPLACE_DB_URL") or DEFAULT_DB_URL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _ensure_sqlite_parent_dir(db_url: str) -> None:
    # sqlite:///relative/path.db or sqlite:////abs/path.db
    if not db_url.startswith("sqlite:"):
        return
    if db_url.startswith("sqlite:////"):
        path = db_url.replace("sqlite:////", "/", 1)
    elif db_url.startswith("sqlite:///"):
        path = db_url.replace("sqlite:///", "", 1)
    else:
        return
    if path in (":memory:", ""):
        return
    Path(path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(db_url: Optional[str] = None) -> Engine:
    url = db_url or get_db_url()
    _ensure_sqlite_parent_dir(url)
    connect_args = {}
    if url.startswith("sqlite:"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)


def create_session_factory(engine: Engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


class SessionProvider:
    """Light wrapper to create/close SQLAlchemy sessions."""

    def __init__(self, db_url: Optional[str] = None):
        self.db_url = db_url or get_db_url()
        self.engine = create_db_engine(self.db_url)
        self._factory = create_session_factory(self.engine)

    def session(self) -> Session:
        return self._factory()
