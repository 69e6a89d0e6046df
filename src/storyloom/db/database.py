from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storyloom.config import settings


def make_engine(url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(url or settings.database_url, echo=False)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine()
async_session = make_sessionmaker(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables if they don't exist."""
    from storyloom.db.tables import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

