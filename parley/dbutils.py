from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from parley.config import Config
from parley.log import logger
from parley.orm import Base


@asynccontextmanager
async def init_engine(config: Config) -> AsyncIterator[AsyncEngine]:
    """Create the SQLite engine and the chat tables if they are missing."""
    Path(config.sqlite_file_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(config.get_db_url(async_mode=True))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready at {config.sqlite_file_path}")
    try:
        yield engine
    finally:
        await engine.dispose()


@asynccontextmanager
async def open_db_session(config: Config) -> AsyncIterator[AsyncSession]:
    async with init_engine(config) as engine:
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        async with session_factory() as session:
            yield session
