from datetime import date, datetime
from typing import AsyncGenerator, NoReturn, Optional

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import async_session
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.services.cache import CacheService

logger = get_logger(__name__)


# One database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Cache service per request
async def get_cache() -> AsyncGenerator[CacheService, None]:
    redis = await CacheService.get_redis()
    yield CacheService(redis)


async def require_admin_token(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    """Require the operator token. If ADMIN_SECRET is not configured, reject all requests (fail-closed)."""
    secret = get_settings().ADMIN_SECRET
    if not secret:
        logger.warning("ADMIN_SECRET not configured, operator endpoints are blocked")
        raise HTTPException(status_code=503, detail="Operator API not configured (ADMIN_SECRET missing)")
    if not x_admin_token or x_admin_token != secret:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


def handle_service_error(e: ServiceError) -> NoReturn:
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


def local_now() -> datetime:
    return datetime.now(get_settings().tz)


def local_today() -> date:
    return local_now().date()
