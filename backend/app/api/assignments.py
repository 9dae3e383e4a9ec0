from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import bind_request_context, clear_request_context, get_logger
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import AssignmentCreate
from backend.app.services.assignments import AssignmentEngine, auto_assign_and_notify
from backend.app.services.notifications import notify_assignments_created

router = APIRouter()
logger = get_logger(__name__)


@router.get("")
async def list_assignments(
    service_date: date = Query(..., alias="date"),
    courier_id: Optional[int] = None,
    slot_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
):
    engine = AssignmentEngine(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: engine.list_assignments(service_date, courier_id=courier_id, slot_id=slot_id),
            operation="assignment.list",
            commit=False,
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("")
async def assign_courier(data: AssignmentCreate, session: AsyncSession = Depends(get_session)):
    """Bind a courier to one or more slots; existing bindings are reported as skipped."""
    engine = AssignmentEngine(session)
    try:
        result = await run_with_store_retry(
            session,
            lambda: engine.assign_courier_to_slots(
                data.courier_id, data.sector_id, data.slot_ids, data.date, data.requested_capacity
            ),
            operation="assignment.create",
        )
    except ServiceError as e:
        handle_service_error(e)
    if result["assigned"]:
        await notify_assignments_created(data.date.isoformat(), result["assignments"])
    return result


@router.post("/auto")
async def auto_assign(
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    bind_request_context(date=service_date.isoformat(), operation="auto_assign")
    try:
        result = await auto_assign_and_notify(session, service_date)
    except ServiceError as e:
        handle_service_error(e)
    finally:
        clear_request_context()
    return {
        "assignmentsCreated": result["assignments_created"],
        "ordersBound": result["orders_bound"],
        "uncoveredSlotIds": result["uncovered_slot_ids"],
    }


@router.delete("")
async def reset_assignments(
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    """Remove all assignments of a date. 409 if any order is already with a courier."""
    engine = AssignmentEngine(session)
    try:
        result = await run_with_store_retry(
            session, lambda: engine.reset_assignments(service_date), operation="assignment.reset"
        )
    except ServiceError as e:
        handle_service_error(e)
    return {"removed": result["removed"], "ordersUnbound": result["orders_unbound"]}
