from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.store import run_with_store_retry
from backend.app.services.dashboard import DashboardProjector

router = APIRouter()


@router.get("/slots")
async def slot_board(
    service_date: date = Query(..., alias="date"),
    courier_id: Optional[int] = None,
    sector_id: Optional[int] = None,
    now: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
):
    """Slot -> vendor -> order -> item view with derived statuses as of ``now``."""
    projector = DashboardProjector(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: projector.slot_board(service_date, now=now, courier_id=courier_id, sector_id=sector_id),
            operation="dashboard.slots",
            commit=False,
        )
    except ServiceError as e:
        handle_service_error(e)
