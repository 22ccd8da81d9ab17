"""
Database layer: declarative base, the Store client and the FastAPI session dependency.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _engine_options(url: str) -> Dict[str, Any]:
    timeout = max(int(settings.DB_COMMAND_TIMEOUT_SECONDS), 1)
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}

    options: Dict[str, Any] = {
        "pool_size": max(int(settings.DB_POOL_SIZE), 1),
        "max_overflow": max(int(settings.DB_MAX_OVERFLOW), 0),
        "pool_timeout": max(int(settings.DB_POOL_TIMEOUT_SECONDS), 1),
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }
    if "+asyncpg" in url:
        options["connect_args"] = {"timeout": timeout, "command_timeout": timeout}
    return options


class Store:
    """Owns the async engine and session factory for one application instance."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.DATABASE_URL
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker] = None

    async def open(self) -> "Store":
        if self.engine is None:
            self.engine = create_async_engine(self.url, **_engine_options(self.url))
            self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
            logger.info("Store opened (%s)", self.engine.url.render_as_string(hide_password=True))
        return self

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Store closed")
        self.engine = None
        self.session_maker = None

    async def create_schema(self) -> None:
        import models  # noqa: F401

        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        async with self._require_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self.session_maker is None:
            raise RuntimeError("Store is not open")
        async with self.session_maker() as session:
            yield session

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("Store is not open")
        return self.engine


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session from the application's store."""
    store: Store = request.app.state.store
    async with store.session() as session:
        yield session
