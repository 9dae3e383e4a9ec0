from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error, local_today
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import ActiveToggle, CapacityChange, SlotResponse, SlotDefinition
from backend.app.services.capacity import CapacityLedger
from backend.app.services.delivery_slots import DeliverySlotService

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=list[SlotResponse])
async def list_slots(
    sector_id: Optional[int] = None,
    active_only: bool = False,
    session: AsyncSession = Depends(get_session),
):
    service = DeliverySlotService(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: service.list_slots(sector_id=sector_id, active_only=active_only),
            operation="slot.list",
            commit=False,
        )
    except ServiceError as e:
        handle_service_error(e)


@router.get("/available")
async def available_slots(
    sector_id: int,
    service_date: date = Query(..., alias="date"),
    now: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
):
    """Slots of a sector still open for orders on a date."""
    service = DeliverySlotService(session)
    try:
        slots = await run_with_store_retry(
            session,
            lambda: service.get_available_slots(sector_id, service_date, now=now),
            operation="slot.available",
            commit=False,
        )
    except ServiceError as e:
        handle_service_error(e)
    return {"sector_id": sector_id, "date": service_date.isoformat(), "slots": slots}


@router.post("", response_model=SlotResponse, status_code=201)
async def create_slot(data: SlotDefinition, session: AsyncSession = Depends(get_session)):
    service = DeliverySlotService(session)
    try:
        return await run_with_store_retry(
            session, lambda: service.create_slot(data.model_dump()), operation="slot.create"
        )
    except ServiceError as e:
        handle_service_error(e)


@router.put("/{slot_id}", response_model=SlotResponse)
async def update_slot(
    slot_id: int,
    data: SlotDefinition,
    as_of: Optional[date] = None,
    session: AsyncSession = Depends(get_session),
):
    service = DeliverySlotService(session)
    as_of = as_of or local_today()
    try:
        return await run_with_store_retry(
            session, lambda: service.update_slot(slot_id, data.model_dump(), as_of), operation="slot.update"
        )
    except ServiceError as e:
        handle_service_error(e)


@router.delete("/{slot_id}")
async def delete_slot(
    slot_id: int,
    as_of: Optional[date] = None,
    session: AsyncSession = Depends(get_session),
):
    service = DeliverySlotService(session)
    as_of = as_of or local_today()
    try:
        return await run_with_store_retry(
            session, lambda: service.delete_slot(slot_id, as_of), operation="slot.delete"
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("/{slot_id}/toggle", response_model=SlotResponse)
async def toggle_slot(slot_id: int, data: ActiveToggle, session: AsyncSession = Depends(get_session)):
    service = DeliverySlotService(session)
    try:
        return await run_with_store_retry(
            session, lambda: service.set_active(slot_id, data.is_active), operation="slot.toggle"
        )
    except ServiceError as e:
        handle_service_error(e)


@router.put("/{slot_id}/capacity")
async def change_slot_capacity(
    slot_id: int,
    data: CapacityChange,
    session: AsyncSession = Depends(get_session),
):
    """Raise or lower the runtime ceiling (up to 1.5x the defined max_orders)."""
    ledger = CapacityLedger(session)
    as_of = data.as_of or local_today()
    try:
        return await run_with_store_retry(
            session, lambda: ledger.change_capacity(slot_id, data.max_orders, as_of), operation="slot.capacity"
        )
    except ServiceError as e:
        handle_service_error(e)
