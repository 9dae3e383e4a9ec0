import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Awaitable, Dict

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import assignments, capacity, couriers, dashboard, orders, pickups, sectors, slots
from backend.app.api.deps import get_session, require_admin_token
from backend.app.core.exceptions import ServiceError
from backend.app.services.cache import CacheService
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.settings import get_settings
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response

APP_VERSION = "1.0.0"

# Settings errors are fatal before anything else starts
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
logger = get_logger(__name__)

logger.info(
    "Scheduler configuration loaded",
    environment=settings.ENVIRONMENT,
    timezone=settings.TIMEZONE,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    auto_assign_enabled=settings.AUTO_ASSIGN_ENABLED,
    notify_webhook=bool(settings.NOTIFY_WEBHOOK_URL),
)


def _seconds_until(hour: int, now: datetime) -> float:
    """Seconds from ``now`` to the next local ``hour``:00."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now >= target:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def _daily_scheduler():
    """Background task: run auto-assign for the local day at AUTO_ASSIGN_HOUR."""
    from backend.app.core.database import async_session
    from backend.app.services.assignments import auto_assign_and_notify

    tz = settings.tz
    while True:
        try:
            wait_secs = _seconds_until(settings.AUTO_ASSIGN_HOUR, datetime.now(tz=tz))
            logger.info("Auto-assign scheduler sleeping", hour=settings.AUTO_ASSIGN_HOUR, wait_seconds=int(wait_secs))
            await asyncio.sleep(wait_secs)

            today = datetime.now(tz=tz).date()
            async with async_session() as session:
                try:
                    result = await auto_assign_and_notify(session, today)
                except ServiceError as e:
                    logger.error("Scheduled auto-assign failed", date=today.isoformat(), error=e.message)
                    continue
            logger.info(
                "Scheduled auto-assign done",
                date=today.isoformat(),
                assignments_created=result["assignments_created"],
                orders_bound=result["orders_bound"],
                uncovered_slot_ids=result["uncovered_slot_ids"],
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Auto-assign scheduler crashed, restarting in 60s", error=str(e))
            await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the auto-assign scheduler when enabled; close Redis on shutdown."""
    logger.info("Scheduler API starting", version=APP_VERSION)
    scheduler_task = asyncio.create_task(_daily_scheduler()) if settings.AUTO_ASSIGN_ENABLED else None
    yield
    if scheduler_task:
        scheduler_task.cancel()
    logger.info("Scheduler API stopping")
    await CacheService.close()


app = FastAPI(title="Fulfillment Scheduler", version=APP_VERSION, lifespan=lifespan)

# get_settings() already refuses production without ALLOWED_ORIGINS
cors_origins = settings.allowed_origins_list or ["*"]
if cors_origins == ["*"]:
    logger.warning("CORS open to all origins (development)")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
# Added after CORS so it sees the final status code
app.add_middleware(PrometheusMiddleware)

# Operator API: X-Admin-Token on every route
_operator = [Depends(require_admin_token)]
app.include_router(sectors.router, prefix="/sectors", tags=["sectors"], dependencies=_operator)
app.include_router(slots.router, prefix="/slots", tags=["slots"], dependencies=_operator)
app.include_router(capacity.router, prefix="/capacity", tags=["capacity"], dependencies=_operator)
app.include_router(couriers.router, prefix="/couriers", tags=["couriers"], dependencies=_operator)
app.include_router(assignments.router, prefix="/assignments", tags=["assignments"], dependencies=_operator)
app.include_router(pickups.router, prefix="/pickups", tags=["pickups"], dependencies=_operator)
app.include_router(orders.router, prefix="/orders", tags=["orders"], dependencies=_operator)
app.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"], dependencies=_operator)


@app.get("/")
async def root():
    return {"status": "ok"}


async def _probe(name: str, check: Awaitable) -> str:
    try:
        await asyncio.wait_for(check, timeout=settings.STORE_TIMEOUT_SECONDS)
    except Exception as e:
        logger.error("Health probe failed", probe=name, error=str(e) or type(e).__name__)
        return f"error: {str(e) or type(e).__name__}"
    return "ok"


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Database and Redis reachability, each bounded by STORE_TIMEOUT_SECONDS."""
    redis = await CacheService.get_redis()
    checks: Dict[str, str] = {
        "database": await _probe("database", session.execute(text("SELECT 1"))),
        "redis": await _probe("redis", redis.ping()),
    }
    healthy = all(v == "ok" for v in checks.values())
    return {"status": "healthy" if healthy else "unhealthy", "version": APP_VERSION, "checks": checks}


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus text format, or OpenMetrics with ?openmetrics=true."""
    return get_metrics_response(openmetrics=openmetrics)
