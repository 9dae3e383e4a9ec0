"""Send fulfillment events to the notification dispatcher (customers, vendors, couriers)."""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import httpx

from backend.app.core.constants import (
    AUDIENCE_COURIERS,
    AUDIENCE_CUSTOMERS,
    AUDIENCE_VENDORS,
    NOTIFICATION_AUDIENCES,
)
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings

logger = get_logger(__name__)


async def notify(audience: str, event: str, payload: Dict[str, Any]) -> bool:
    """
    Post one event to the dispatcher. Returns True if it was accepted.

    Fire-and-forget: failures are logged, never raised, so a dispatcher
    outage cannot undo a committed fulfillment change.
    """
    if audience not in NOTIFICATION_AUDIENCES:
        raise ValueError(f"Unknown notification audience: {audience}")
    settings = get_settings()
    if not settings.NOTIFY_WEBHOOK_URL:
        logger.debug("NOTIFY_WEBHOOK_URL not set, skip notification", audience=audience, event=event)
        return False
    body = {
        "audience": audience,
        "event": event,
        "payload": payload,
        "sent_at": datetime.utcnow().isoformat(),
    }
    try:
        async with httpx.AsyncClient(timeout=settings.NOTIFY_TIMEOUT_SECONDS) as client:
            r = await client.post(settings.NOTIFY_WEBHOOK_URL, json=body)
            if r.is_success:
                return True
            logger.warning(
                "Notification rejected",
                audience=audience,
                event=event,
                status=r.status_code,
                body=r.text[:500],
            )
            return False
    except httpx.HTTPError as e:
        logger.warning("Notification dispatch failed", audience=audience, event=event, error=str(e))
        return False


async def notify_assignments_created(service_date: str, assignments: Iterable[Dict[str, Any]]) -> int:
    """Tell each newly assigned courier about their slot. Returns how many were sent."""
    sent = 0
    for a in assignments:
        if await notify(AUDIENCE_COURIERS, "assignment.created", a):
            sent += 1
    return sent


async def notify_pickup_confirmed(slot_id: int, vendor_id: int, service_date: str, order_ids: Iterable[int]) -> None:
    payload = {"slot_id": slot_id, "vendor_id": vendor_id, "date": service_date, "order_ids": list(order_ids)}
    await notify(AUDIENCE_VENDORS, "pickup.confirmed", payload)
    await notify(AUDIENCE_CUSTOMERS, "order.picked_up", payload)


async def notify_pickup_failed(
    slot_id: int,
    vendor_id: int,
    service_date: str,
    order_ids: Iterable[int],
    reason: Optional[str] = None,
) -> None:
    """Operator alert: the vendor's units stay pending until someone re-triggers en route."""
    payload = {
        "slot_id": slot_id,
        "vendor_id": vendor_id,
        "date": service_date,
        "order_ids": list(order_ids),
        "reason": reason,
    }
    await notify(AUDIENCE_VENDORS, "pickup.failed", payload)
    await notify(AUDIENCE_COURIERS, "pickup.failed", payload)


async def notify_delivery_update(order_id: int, status: str, courier_id: Optional[int] = None) -> bool:
    return await notify(
        AUDIENCE_CUSTOMERS,
        f"delivery.{status}",
        {"order_id": order_id, "status": status, "courier_id": courier_id},
    )
