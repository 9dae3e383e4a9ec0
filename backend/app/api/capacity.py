from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error, local_now
from backend.app.core.exceptions import ServiceError
from backend.app.core.store import run_with_store_retry
from backend.app.services.capacity import CapacityLedger

router = APIRouter()


@router.get("/{slot_id}")
async def get_capacity(
    slot_id: int,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    ledger = CapacityLedger(session)
    try:
        return await run_with_store_retry(
            session, lambda: ledger.snapshot(slot_id, service_date), operation="capacity.snapshot", commit=False
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("/{slot_id}/admit")
async def admit_order(
    slot_id: int,
    service_date: date = Query(..., alias="date"),
    now: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
):
    """
    Reserve one order seat. 409 with the current counts when the slot is full.
    ``now`` defaults to the current local time and enforces the slot cutoff.
    """
    ledger = CapacityLedger(session)
    now = now or local_now()
    try:
        admission = await run_with_store_retry(
            session, lambda: ledger.admit(slot_id, service_date, now=now), operation="capacity.admit"
        )
        if not admission.admitted:
            raise admission.rejection
    except ServiceError as e:
        handle_service_error(e)
    return admission.to_dict()


@router.post("/{slot_id}/release")
async def release_order(
    slot_id: int,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    ledger = CapacityLedger(session)
    try:
        committed = await run_with_store_retry(
            session, lambda: ledger.release(slot_id, service_date), operation="capacity.release"
        )
    except ServiceError as e:
        handle_service_error(e)
    return {"slot_id": slot_id, "date": service_date.isoformat(), "committed": committed}
