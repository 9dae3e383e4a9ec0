"""
Pickup and delivery transitions.

Every change is checked against the transition tables in
fulfillment_states; the order's own status is kept in step so the order
collaborator sees progress without reading fulfillment tables.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    INACTIVE_ORDER_STATUSES,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FAILED,
    ORDER_STATUS_OUT_FOR_DELIVERY,
    ORDER_STATUS_PICKED_UP,
    ORDER_STATUS_RETURNED,
)
from backend.app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import fulfillment_transitions_total
from backend.app.models.assignment import AssignmentStatus, DeliveryAssignment
from backend.app.models.fulfillment import DeliveryUnit, PickupUnit
from backend.app.models.order import Order
from backend.app.services.couriers import CourierService
from backend.app.services.fulfillment_states import (
    DELIVERY_TRANSITIONS,
    PICKUP_TRANSITIONS,
    TERMINAL_DELIVERY_STATUSES,
    DeliveryStatus,
    PickupStatus,
    check_transition,
    derive_order_pickup_status,
)
from backend.app.services.order_source import OrderSource

logger = get_logger(__name__)

_DELIVERY_TIMESTAMPS = {
    DeliveryStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.FAILED: "failed_at",
    DeliveryStatus.RETURNED: "returned_at",
}

_ORDER_STATUS_FOR = {
    DeliveryStatus.OUT_FOR_DELIVERY: ORDER_STATUS_OUT_FOR_DELIVERY,
    DeliveryStatus.DELIVERED: ORDER_STATUS_DELIVERED,
    DeliveryStatus.FAILED: ORDER_STATUS_FAILED,
    DeliveryStatus.RETURNED: ORDER_STATUS_RETURNED,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class FulfillmentService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.couriers = CourierService(session)
        self.orders = OrderSource(session)

    # ------------------------------------------------------------------
    # Pickup (per vendor, in bulk for one slot and date)
    # ------------------------------------------------------------------

    async def mark_vendor_en_route(self, slot_id: int, vendor_id: int, service_date: date) -> Dict[str, Any]:
        """Courier heading to the vendor: pending units move to en_route, others are left alone."""
        units = await self._vendor_units(slot_id, vendor_id, service_date)
        now = datetime.utcnow()
        moved: List[int] = []
        for unit in units:
            current = PickupStatus(unit.status)
            if current != PickupStatus.PENDING:
                continue
            check_transition("pickup", PICKUP_TRANSITIONS, unit.id, current, PickupStatus.EN_ROUTE)
            unit.status = PickupStatus.EN_ROUTE.value
            unit.en_route_at = now
            moved.append(unit.order_id)
        if moved:
            fulfillment_transitions_total.labels(machine="pickup", to_status="en_route").inc(len(moved))
        await self.session.flush()
        logger.info(
            "Vendor pickup en route",
            slot_id=slot_id,
            vendor_id=vendor_id,
            date=service_date.isoformat(),
            moved=len(moved),
        )
        return {
            "slot_id": slot_id,
            "vendor_id": vendor_id,
            "date": service_date.isoformat(),
            "en_route": len(moved),
            "skipped": len(units) - len(moved),
            "order_ids": moved,
        }

    async def mark_vendor_picked_up(self, slot_id: int, vendor_id: int, service_date: date) -> Dict[str, Any]:
        """
        One courier visit collects all of a vendor's outstanding orders for
        the slot. Units already picked up are skipped; orders whose every
        vendor is now collected move to picked_up.
        """
        units = await self._vendor_units(slot_id, vendor_id, service_date)
        now = datetime.utcnow()
        picked: List[PickupUnit] = []
        for unit in units:
            current = PickupStatus(unit.status)
            if current == PickupStatus.PICKED_UP:
                continue
            check_transition("pickup", PICKUP_TRANSITIONS, unit.id, current, PickupStatus.PICKED_UP)
            unit.status = PickupStatus.PICKED_UP.value
            unit.picked_up_at = now
            picked.append(unit)
        await self.session.flush()

        completed: List[int] = []
        for unit in picked:
            if await self._pickup_complete(unit.order_id):
                order = await self.orders.get_order(unit.order_id)
                order.status = ORDER_STATUS_PICKED_UP
                completed.append(unit.order_id)
        for assignment_id in sorted({u.assignment_id for u in picked if u.assignment_id}):
            await self._activate_assignment(assignment_id, now)

        if picked:
            fulfillment_transitions_total.labels(machine="pickup", to_status="picked_up").inc(len(picked))
        await self.session.flush()
        logger.info(
            "Vendor pickup confirmed",
            slot_id=slot_id,
            vendor_id=vendor_id,
            date=service_date.isoformat(),
            picked_up=len(picked),
            already_picked_up=len(units) - len(picked),
            orders_ready=len(completed),
        )
        return {
            "slot_id": slot_id,
            "vendor_id": vendor_id,
            "date": service_date.isoformat(),
            "picked_up": len(picked),
            "already_picked_up": len(units) - len(picked),
            "order_ids": [u.order_id for u in picked],
            "orders_pickup_completed": completed,
        }

    async def report_pickup_failure(
        self,
        slot_id: int,
        vendor_id: int,
        service_date: date,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a failed pickup visit. Units stay where they are so an
        operator can send a courier again; nothing is retried automatically.
        """
        units = await self._vendor_units(slot_id, vendor_id, service_date)
        open_units = [u for u in units if u.status != PickupStatus.PICKED_UP.value]
        if not open_units:
            raise ConflictError(
                f"Vendor {vendor_id} has nothing left to pick up for slot {slot_id}",
                slot_id=slot_id,
                vendor_id=vendor_id,
                date=service_date.isoformat(),
            )
        for unit in open_units:
            unit.failed_attempts = (unit.failed_attempts or 0) + 1
            if reason:
                unit.notes = reason
        await self.session.flush()
        logger.warning(
            "Pickup failed",
            slot_id=slot_id,
            vendor_id=vendor_id,
            date=service_date.isoformat(),
            orders=len(open_units),
            reason=reason,
        )
        return {
            "slot_id": slot_id,
            "vendor_id": vendor_id,
            "date": service_date.isoformat(),
            "order_ids": [u.order_id for u in open_units],
            "courier_ids": sorted({u.courier_id for u in open_units if u.courier_id}),
            "reason": reason,
        }

    # ------------------------------------------------------------------
    # Delivery (one per order)
    # ------------------------------------------------------------------

    async def mark_out_for_delivery(self, order_id: int, courier_id: int) -> Dict[str, Any]:
        order, unit = await self._delivery_for(order_id, courier_id, DeliveryStatus.OUT_FOR_DELIVERY)
        await self._require_pickup_complete(unit, DeliveryStatus.OUT_FOR_DELIVERY)
        self._apply(order, unit, DeliveryStatus.OUT_FOR_DELIVERY)
        await self._activate_assignment(unit.assignment_id, datetime.utcnow())
        await self.session.flush()
        return await self.get_order_fulfillment(order_id)

    async def mark_order_delivered(self, order_id: int, courier_id: int) -> Dict[str, Any]:
        """
        Complete the delivery. Allowed only once every vendor's items are
        picked up; a still-pending delivery passes through out_for_delivery.
        """
        order, unit = await self._delivery_for(order_id, courier_id, DeliveryStatus.DELIVERED)
        await self._require_pickup_complete(unit, DeliveryStatus.DELIVERED)
        if DeliveryStatus(unit.status) == DeliveryStatus.PENDING:
            self._apply(order, unit, DeliveryStatus.OUT_FOR_DELIVERY)
        self._apply(order, unit, DeliveryStatus.DELIVERED)
        await self.couriers.record_delivery_outcome(courier_id, successful=True)
        await self._refresh_assignment(unit.assignment_id)
        await self.session.flush()
        return await self.get_order_fulfillment(order_id)

    async def mark_delivery_failed(self, order_id: int, courier_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
        order, unit = await self._delivery_for(order_id, courier_id, DeliveryStatus.FAILED)
        self._apply(order, unit, DeliveryStatus.FAILED)
        if reason:
            unit.notes = reason
        await self.session.flush()
        logger.warning("Delivery failed", order_id=order_id, courier_id=courier_id, reason=reason)
        return await self.get_order_fulfillment(order_id)

    async def mark_order_returned(self, order_id: int, courier_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
        order, unit = await self._delivery_for(order_id, courier_id, DeliveryStatus.RETURNED)
        self._apply(order, unit, DeliveryStatus.RETURNED)
        if reason:
            unit.notes = reason
        await self.couriers.record_delivery_outcome(courier_id, successful=False)
        await self._refresh_assignment(unit.assignment_id)
        await self.session.flush()
        return await self.get_order_fulfillment(order_id)

    async def get_order_fulfillment(self, order_id: int) -> Dict[str, Any]:
        order = await self.orders.get_order(order_id)
        unit = await self._delivery_unit(order_id)
        pickups = list((await self.session.execute(
            select(PickupUnit).where(PickupUnit.order_id == order_id).order_by(PickupUnit.vendor_id)
        )).scalars().all())
        return {
            "order_id": order.id,
            "order_status": order.status,
            "slot_id": order.slot_id,
            "date": order.delivery_date.isoformat(),
            "courier_id": unit.courier_id if unit else None,
            "assignment_id": unit.assignment_id if unit else None,
            "pickup_status": derive_order_pickup_status(PickupStatus(p.status) for p in pickups).value,
            "pickups": [
                {
                    "vendor_id": p.vendor_id,
                    "status": p.status,
                    "en_route_at": _iso(p.en_route_at),
                    "picked_up_at": _iso(p.picked_up_at),
                    "failed_attempts": p.failed_attempts or 0,
                }
                for p in pickups
            ],
            "delivery": None if unit is None else {
                "status": unit.status,
                "out_for_delivery_at": _iso(unit.out_for_delivery_at),
                "delivered_at": _iso(unit.delivered_at),
                "failed_at": _iso(unit.failed_at),
                "returned_at": _iso(unit.returned_at),
                "notes": unit.notes,
            },
        }

    # ------------------------------------------------------------------

    def _apply(self, order: Order, unit: DeliveryUnit, target: DeliveryStatus) -> None:
        check_transition("delivery", DELIVERY_TRANSITIONS, order.id, DeliveryStatus(unit.status), target)
        unit.status = target.value
        setattr(unit, _DELIVERY_TIMESTAMPS[target], datetime.utcnow())
        order.status = _ORDER_STATUS_FOR[target]
        fulfillment_transitions_total.labels(machine="delivery", to_status=target.value).inc()
        logger.info("Delivery transition", order_id=order.id, courier_id=unit.courier_id, status=target.value)

    async def _delivery_unit(self, order_id: int) -> Optional[DeliveryUnit]:
        return await self.session.scalar(select(DeliveryUnit).where(DeliveryUnit.order_id == order_id))

    async def _delivery_for(self, order_id: int, courier_id: int, requested: DeliveryStatus):
        order = await self.orders.get_order(order_id)
        unit = await self._delivery_unit(order_id)
        if unit is None:
            raise InvalidTransitionError("delivery", order_id, "unassigned", requested.value, "no courier bound to the order")
        if unit.courier_id != courier_id:
            raise ConflictError(
                f"Order {order_id} is bound to another courier",
                order_id=order_id,
                courier_id=unit.courier_id,
                requested_courier_id=courier_id,
            )
        return order, unit

    async def _pickup_statuses(self, order_id: int) -> List[PickupStatus]:
        result = await self.session.execute(select(PickupUnit.status).where(PickupUnit.order_id == order_id))
        return [PickupStatus(s) for s in result.scalars().all()]

    async def _pickup_complete(self, order_id: int) -> bool:
        statuses = await self._pickup_statuses(order_id)
        return bool(statuses) and all(s == PickupStatus.PICKED_UP for s in statuses)

    async def _require_pickup_complete(self, unit: DeliveryUnit, requested: DeliveryStatus) -> None:
        if DeliveryStatus(unit.status) != DeliveryStatus.PENDING:
            return
        if not await self._pickup_complete(unit.order_id):
            raise InvalidTransitionError(
                "delivery", unit.order_id, unit.status, requested.value, "pickup not complete"
            )

    async def _activate_assignment(self, assignment_id: Optional[int], when: datetime) -> None:
        if assignment_id is None:
            return
        assignment = await self.session.get(DeliveryAssignment, assignment_id)
        if assignment and assignment.status == AssignmentStatus.ASSIGNED.value:
            assignment.status = AssignmentStatus.ACTIVE.value
            assignment.activated_at = when
            logger.info("Assignment active", assignment_id=assignment_id, courier_id=assignment.courier_id)

    async def _refresh_assignment(self, assignment_id: Optional[int]) -> None:
        """Mark the assignment completed once every order bound to it is terminal."""
        if assignment_id is None:
            return
        await self.session.flush()
        statuses = (await self.session.execute(
            select(DeliveryUnit.status).where(DeliveryUnit.assignment_id == assignment_id)
        )).scalars().all()
        if statuses and all(DeliveryStatus(s) in TERMINAL_DELIVERY_STATUSES for s in statuses):
            assignment = await self.session.get(DeliveryAssignment, assignment_id)
            if assignment and assignment.status != AssignmentStatus.COMPLETED.value:
                assignment.status = AssignmentStatus.COMPLETED.value
                assignment.completed_at = datetime.utcnow()
                logger.info("Assignment completed", assignment_id=assignment_id, courier_id=assignment.courier_id)

    async def _vendor_units(self, slot_id: int, vendor_id: int, service_date: date) -> List[PickupUnit]:
        result = await self.session.execute(
            select(PickupUnit)
            .join(Order, Order.id == PickupUnit.order_id)
            .where(
                Order.slot_id == slot_id,
                Order.delivery_date == service_date,
                Order.status.notin_(INACTIVE_ORDER_STATUSES),
                PickupUnit.vendor_id == vendor_id,
            )
            .order_by(PickupUnit.order_id)
        )
        units = list(result.scalars().all())
        if not units:
            raise NotFoundError("Pickup", f"slot {slot_id} / vendor {vendor_id} on {service_date.isoformat()}")
        return units
