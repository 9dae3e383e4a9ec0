from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import PickupFailure
from backend.app.services.fulfillment import FulfillmentService
from backend.app.services.notifications import notify_pickup_confirmed, notify_pickup_failed

router = APIRouter()


@router.post("/{slot_id}/{vendor_id}/en-route")
async def vendor_en_route(
    slot_id: int,
    vendor_id: int,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    service = FulfillmentService(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: service.mark_vendor_en_route(slot_id, vendor_id, service_date),
            operation="pickup.en_route",
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("/{slot_id}/{vendor_id}/confirm")
async def confirm_vendor_pickup(
    slot_id: int,
    vendor_id: int,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    """Courier collected every outstanding order of this vendor for the slot."""
    service = FulfillmentService(session)
    try:
        result = await run_with_store_retry(
            session,
            lambda: service.mark_vendor_picked_up(slot_id, vendor_id, service_date),
            operation="pickup.confirm",
        )
    except ServiceError as e:
        handle_service_error(e)
    if result["picked_up"]:
        await notify_pickup_confirmed(slot_id, vendor_id, service_date.isoformat(), result["order_ids"])
    return result


@router.post("/{slot_id}/{vendor_id}/failed")
async def report_pickup_failure(
    slot_id: int,
    vendor_id: int,
    data: PickupFailure,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    service = FulfillmentService(session)
    try:
        result = await run_with_store_retry(
            session,
            lambda: service.report_pickup_failure(slot_id, vendor_id, service_date, data.reason),
            operation="pickup.failed",
        )
    except ServiceError as e:
        handle_service_error(e)
    await notify_pickup_failed(slot_id, vendor_id, service_date.isoformat(), result["order_ids"], data.reason)
    return result
