import os
import logging
from typing import Awaitable, Callable, TypeVar

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

DATABASE_URL = os.getenv(
    "DATABASE_URL", "sqlite+aiosqlite:///./moneystack.db"
)  # any async SQLAlchemy URL, e.g. postgresql+asyncpg://...


# Control SQL echo via environment variable and route output through logging
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
if SQL_ECHO:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

async_session = async_sessionmaker(engine, expire_on_commit=False)

T = TypeVar("T")


async def create_db_and_tables() -> None:
    from . import models  # noqa: F401  register tables on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def run_atomic(
    session_factory: async_sessionmaker,
    fn: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """Run ``fn`` in a fresh session inside a single database transaction.

    Everything ``fn`` writes is committed together when it returns, or
    rolled back together when it raises.
    """
    async with session_factory() as session:
        async with session.begin():
            return await fn(session)
