from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from wgsync.enums import StoreState
from wgsync.settings import get_settings

logger = logging.getLogger("wgsync.db")


class Base(DeclarativeBase):
    pass


class PeerStore:
    """
    Handle on the persistent peer directory.

    Injected into the reconciler instead of a process-wide "connected" flag; callers
    that care about availability ask `state()`.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    def session(self) -> AsyncSession:
        return self._sessionmaker()

    async def state(self) -> StoreState:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("store_unavailable error=%s", exc)
            return StoreState.UNAVAILABLE
        return StoreState.READY

    async def create_all(self) -> None:
        # Models must be imported so the metadata is populated.
        import wgsync.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required (set it in .env)")
    return create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_store() -> PeerStore:
    return PeerStore(get_engine())
