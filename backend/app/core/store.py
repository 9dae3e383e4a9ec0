"""
Bounded-time, retried units of work against the backing store.

A unit of work is an async callable that performs its reads and writes on an
AsyncSession. Each attempt is cut off after STORE_TIMEOUT_SECONDS; transient
connection failures roll the session back and retry with exponential backoff.
Business errors (ServiceError) are never retried.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import StoreUnavailable
from backend.app.core.logging import get_logger
from backend.app.core.metrics import store_retries_total, store_unavailable_total
from backend.app.core.settings import get_settings

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    asyncio.TimeoutError,
)


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError as e:
        logger.warning("Rollback after failed attempt also failed", error=str(e))


async def run_with_store_retry(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    operation: str,
    commit: bool = True,
    attempts: Optional[int] = None,
    timeout: Optional[float] = None,
    backoff: Optional[float] = None,
) -> T:
    """
    Run ``work`` and (optionally) commit, retrying transient store failures.

    Raises StoreUnavailable once the attempt budget is spent. Any other
    exception rolls the session back and propagates unchanged.
    """
    settings = get_settings()
    attempts = attempts or settings.STORE_RETRY_ATTEMPTS
    timeout = timeout or settings.STORE_TIMEOUT_SECONDS
    backoff = settings.STORE_RETRY_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            result = await asyncio.wait_for(work(), timeout=timeout)
            if commit:
                await asyncio.wait_for(session.commit(), timeout=timeout)
            return result
        except TRANSIENT_ERRORS as e:
            await _safe_rollback(session)
            if attempt >= attempts:
                store_unavailable_total.labels(operation=operation).inc()
                logger.error(
                    "Store unavailable, giving up",
                    operation=operation,
                    attempts=attempt,
                    error=str(e) or type(e).__name__,
                )
                raise StoreUnavailable(attempts=attempt) from e
            delay = backoff * (2 ** (attempt - 1))
            store_retries_total.labels(operation=operation).inc()
            logger.warning(
                "Transient store failure, retrying",
                operation=operation,
                attempt=attempt,
                retry_in=delay,
                error=str(e) or type(e).__name__,
            )
            await asyncio.sleep(delay)
        except Exception:
            await _safe_rollback(session)
            raise

    # attempts >= 1 always returns or raises inside the loop
    raise StoreUnavailable(attempts=attempts)
