from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import CourierAction
from backend.app.services.fulfillment import FulfillmentService
from backend.app.services.notifications import notify_delivery_update

router = APIRouter()
logger = get_logger(__name__)


async def _transition(session: AsyncSession, operation: str, work) -> dict:
    try:
        result = await run_with_store_retry(session, work, operation=operation)
    except ServiceError as e:
        handle_service_error(e)
    await notify_delivery_update(result["order_id"], result["delivery"]["status"], result["courier_id"])
    return result


@router.get("/{order_id}/fulfillment")
async def get_order_fulfillment(order_id: int, session: AsyncSession = Depends(get_session)):
    service = FulfillmentService(session)
    try:
        return await run_with_store_retry(
            session, lambda: service.get_order_fulfillment(order_id), operation="order.fulfillment", commit=False
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("/{order_id}/out-for-delivery")
async def out_for_delivery(order_id: int, data: CourierAction, session: AsyncSession = Depends(get_session)):
    service = FulfillmentService(session)
    return await _transition(
        session, "delivery.out", lambda: service.mark_out_for_delivery(order_id, data.courier_id)
    )


@router.post("/{order_id}/deliver")
async def deliver_order(order_id: int, data: CourierAction, session: AsyncSession = Depends(get_session)):
    """409 invalid_transition unless every vendor's items are picked up."""
    service = FulfillmentService(session)
    return await _transition(
        session, "delivery.delivered", lambda: service.mark_order_delivered(order_id, data.courier_id)
    )


@router.post("/{order_id}/fail")
async def fail_delivery(order_id: int, data: CourierAction, session: AsyncSession = Depends(get_session)):
    service = FulfillmentService(session)
    return await _transition(
        session, "delivery.failed", lambda: service.mark_delivery_failed(order_id, data.courier_id, data.reason)
    )


@router.post("/{order_id}/return")
async def return_order(order_id: int, data: CourierAction, session: AsyncSession = Depends(get_session)):
    service = FulfillmentService(session)
    return await _transition(
        session, "delivery.returned", lambda: service.mark_order_returned(order_id, data.courier_id, data.reason)
    )
