from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.core.config import (
    DB_URL,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
    DB_POOL_TIMEOUT,
    STORE_TIMEOUT_SECONDS,
)
from backend.app.core.base import Base  # noqa: F401 - re-exported for compatibility

engine = create_async_engine(
    url=DB_URL,
    echo=False,
    pool_size=DB_POOL_SIZE,
    max_overflow=DB_MAX_OVERFLOW,
    pool_pre_ping=True,  # Drop dead connections before handing them out
    pool_recycle=DB_POOL_RECYCLE,
    pool_timeout=DB_POOL_TIMEOUT,
    # asyncpg: no statement may hang longer than a unit of work
    connect_args={"command_timeout": STORE_TIMEOUT_SECONDS},
)
async_session = async_sessionmaker(engine, expire_on_commit=False)
