#!/usr/bin/env python3
"""
Run auto-assign for one service date.

Run daily via cron when the in-process scheduler is off, e.g.:
    0 6 * * * cd /src && python -m scripts.run_auto_assign

Without --date the local day in TIMEZONE is used.
"""
import argparse
import asyncio
import sys
from datetime import datetime

from backend.app.core.database import async_session
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger, setup_logging
from backend.app.core.settings import get_settings
from backend.app.core.time_parsing import parse_service_date
from backend.app.services.assignments import auto_assign_and_notify

logger = get_logger(__name__)


async def run(service_date) -> int:
    async with async_session() as session:
        try:
            result = await auto_assign_and_notify(session, service_date)
        except ServiceError as e:
            logger.error("Auto-assign failed", date=service_date.isoformat(), error=e.message)
            return 1

    logger.info(
        "Auto-assign done",
        date=service_date.isoformat(),
        assignments_created=result["assignments_created"],
        orders_bound=result["orders_bound"],
        uncovered_slot_ids=result["uncovered_slot_ids"],
    )
    return 0


def main() -> int:
    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)

    parser = argparse.ArgumentParser(description="Assign couriers to the day's delivery slots")
    parser.add_argument("--date", help="Service date, YYYY-MM-DD (default: local today)")
    args = parser.parse_args()

    service_date = parse_service_date(args.date) if args.date else datetime.now(tz=settings.tz).date()
    return asyncio.run(run(service_date))


if __name__ == "__main__":
    sys.exit(main())
