"""Async SQLAlchemy engine and session factory for the knowledge store.

Provides:
- create_engine_from_config(): async engine; SQLite files get WAL mode so
  readers never wait on the single writer, plus a Unicode-aware
  FOLD_FUNCTION since SQLite lower() only folds ASCII
- create_session_factory(): AsyncSession factory with expire_on_commit=False
- init_schema(): idempotent create_all for every BrainBase table
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.brain.config import BrainConfig
from src.brain.models import fold_text
from src.brain.store.tables import BrainBase

logger = structlog.get_logger(__name__)


# SQL name of the fold_text() function registered on SQLite connections
FOLD_FUNCTION = "brain_fold"


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _sql_fold(value: Any) -> Any:
    return fold_text(value) if isinstance(value, str) else value


def create_engine_from_config(config: BrainConfig) -> AsyncEngine:
    """Create the async engine for config.database_url."""
    url = config.database_url
    if is_sqlite(url):
        engine = create_async_engine(url, echo=False)

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragmas(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()
            dbapi_conn.create_function(FOLD_FUNCTION, 1, _sql_fold)

    else:
        engine = create_async_engine(url, pool_size=10, max_overflow=10, echo=False)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_schema(engine: AsyncEngine) -> None:
    """Create all knowledge store tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(BrainBase.metadata.create_all)
    logger.info("store.schema_ready", tables=len(BrainBase.metadata.tables))
