from __future__ import annotations

from pathlib import Path
from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"


def _ensure_sqlite_dirs(url: str) -> None:
    if not url.startswith(SQLITE_ASYNC_PREFIX):
        return
    path = url.replace(SQLITE_ASYNC_PREFIX, "", 1)
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def normalize_db_url(db_url: str | Path) -> str:
    """Turn a bare file path (or sync sqlite URL) into an aiosqlite URL."""
    raw = str(db_url)
    if raw.startswith("sqlite:///"):
        return raw.replace("sqlite:///", SQLITE_ASYNC_PREFIX, 1)
    if "://" in raw:
        return raw
    return f"{SQLITE_ASYNC_PREFIX}{Path(raw)}"


def create_async_engine_and_session(db_url: str | Path) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    url = normalize_db_url(db_url)
    _ensure_sqlite_dirs(url)
    engine = create_async_engine(url, future=True, echo=False)
    SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, SessionLocal
