"""
Assignment engine: binds couriers to (sector, slot, date) and binds the
slot's orders to those couriers.

Creation goes through INSERT ... ON CONFLICT DO NOTHING on the assignment
key, so manual and scheduled runs can overlap without double-booking and a
repeated request is reported as skipped rather than failing.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    MAX_SLOT_ORDERS,
    ORDER_STATUS_ASSIGNED,
    ORDER_STATUS_PLACED,
)
from backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import assignments_created_total
from backend.app.core.settings import get_settings
from backend.app.core.store import run_with_store_retry
from backend.app.core.time_parsing import format_clock
from backend.app.core.upsert import insert_ignore
from backend.app.models.assignment import AssignmentStatus, DeliveryAssignment
from backend.app.models.courier import Courier
from backend.app.models.fulfillment import DeliveryUnit, PickupUnit
from backend.app.models.order import Order
from backend.app.models.sector import Sector
from backend.app.models.slot import DeliverySlot
from backend.app.services.couriers import CourierService
from backend.app.services.fulfillment_states import (
    DeliveryStatus,
    IN_FLIGHT_DELIVERY_STATUSES,
    PickupStatus,
    TERMINAL_DELIVERY_STATUSES,
)
from backend.app.services.notifications import notify_assignments_created
from backend.app.services.order_source import OrderSource
from backend.app.services.sectors import SectorService

logger = get_logger(__name__)

ASSIGNMENT_KEY = ("courier_id", "sector_id", "slot_id", "assigned_date")


@dataclass
class AssignmentResult:
    created: int
    skipped: int
    assignment: DeliveryAssignment
    orders_bound: int = 0
    coverage_added: List[str] = field(default_factory=list)


class AssignmentEngine:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.couriers = CourierService(session)
        self.orders = OrderSource(session)

    async def assign_courier_to_slot(
        self,
        courier_id: int,
        sector_id: int,
        slot_id: int,
        service_date: date,
        requested_capacity: Optional[int] = None,
        source: str = "manual",
    ) -> AssignmentResult:
        """
        Bind a courier to one slot on one date.

        The sector must have demand that day: live orders on one of its
        slots, or seats already committed in the ledger. An existing binding with the same key is returned untouched and
        counted as skipped. A new binding merges the sector's pincodes into
        the courier's coverage and picks up the slot's waiting orders.
        """
        capacity = self.settings.AUTO_ASSIGN_CAPACITY if requested_capacity is None else requested_capacity
        if isinstance(capacity, bool) or not isinstance(capacity, int) or not 1 <= capacity <= MAX_SLOT_ORDERS:
            raise ValidationError([f"requested_capacity must be an integer between 1 and {MAX_SLOT_ORDERS}"])

        courier = await self.couriers.get_courier(courier_id)
        sector = await SectorService(self.session).get_sector(sector_id)
        slot = await self._get_slot(slot_id)
        if slot.sector_id != sector_id:
            raise ValidationError([f"slot {slot_id} does not belong to sector {sector_id}"])
        if not courier.is_active:
            raise ConflictError(f"Courier {courier_id} is not active", courier_id=courier_id)
        if not sector.is_active:
            raise ConflictError(f"Sector {sector_id} is not active", sector_id=sector_id)
        if not slot.is_active or not slot.serves(service_date):
            raise ConflictError(
                f"Slot {slot_id} does not run on {service_date.isoformat()}",
                slot_id=slot_id,
                date=service_date.isoformat(),
            )
        if not await self.orders.sector_has_demand(sector_id, service_date):
            raise ConflictError(
                f"Sector {sector_id} has no orders on {service_date.isoformat()}",
                sector_id=sector_id,
                date=service_date.isoformat(),
            )

        created = await insert_ignore(
            self.session,
            DeliveryAssignment,
            {
                "courier_id": courier_id,
                "sector_id": sector_id,
                "slot_id": slot_id,
                "assigned_date": service_date,
                "status": AssignmentStatus.ASSIGNED.value,
                "max_orders": capacity,
                "current_orders": 0,
                "source": source,
            },
            ASSIGNMENT_KEY,
        )
        assignment = await self._get_by_key(courier_id, sector_id, slot_id, service_date)

        if not created:
            logger.info(
                "Assignment already exists, skipped",
                assignment_id=assignment.id,
                courier_id=courier_id,
                slot_id=slot_id,
                date=service_date.isoformat(),
            )
            return AssignmentResult(created=0, skipped=1, assignment=assignment)

        assignments_created_total.labels(source=source).inc()
        added = await self.couriers.merge_coverage(courier, sector.pincodes or [])
        bound = await self.bind_outstanding_orders(slot, service_date)
        logger.info(
            "Courier assigned to slot",
            assignment_id=assignment.id,
            courier_id=courier_id,
            sector_id=sector_id,
            slot_id=slot_id,
            date=service_date.isoformat(),
            capacity=capacity,
            source=source,
            orders_bound=bound,
            coverage_added=len(added),
        )
        return AssignmentResult(
            created=1, skipped=0, assignment=assignment, orders_bound=bound, coverage_added=added
        )

    async def assign_courier_to_slots(
        self,
        courier_id: int,
        sector_id: int,
        slot_ids: Iterable[int],
        service_date: date,
        requested_capacity: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Bind one courier to several slots; reports "assigned N, skipped M"."""
        slot_ids = list(dict.fromkeys(slot_ids))
        if not slot_ids:
            raise ValidationError(["at least one slot_id is required"])
        results = []
        for slot_id in slot_ids:
            results.append(await self.assign_courier_to_slot(
                courier_id, sector_id, slot_id, service_date, requested_capacity
            ))
        return {
            "assigned": sum(r.created for r in results),
            "skipped": sum(r.skipped for r in results),
            "orders_bound": sum(r.orders_bound for r in results),
            "assignments": [self.assignment_to_dict(r.assignment) for r in results],
        }

    async def auto_assign(self, service_date: date) -> Dict[str, Any]:
        """
        Cover every slot of ``service_date`` that has orders waiting for a courier.

        Existing spare capacity is used first; then eligible couriers are
        added one at a time (lowest daily load, then highest rating) until
        the slot's orders are all bound or no candidate is left. Re-running
        finds nothing outstanding and creates nothing.
        """
        rows = await self.orders.list_orders_needing_slot_assignment(service_date)
        outstanding: Dict[int, Set[int]] = defaultdict(set)
        for row in rows:
            outstanding[row["slot_id"]].add(row["order_id"])

        created: List[Dict[str, Any]] = []
        bound = 0
        uncovered: List[int] = []
        for slot_id in sorted(outstanding):
            slot = await self.session.get(DeliverySlot, slot_id)
            sector = await self.session.get(Sector, slot.sector_id) if slot else None
            if (
                not slot
                or slot.deleted_at is not None
                or not slot.is_active
                or not slot.serves(service_date)
                or not sector
                or not sector.is_active
            ):
                logger.warning(
                    "Orders waiting on a slot that is not running",
                    slot_id=slot_id,
                    sector_active=bool(sector and sector.is_active),
                    date=service_date.isoformat(),
                    orders=len(outstanding[slot_id]),
                )
                uncovered.append(slot_id)
                continue

            bound += await self.bind_outstanding_orders(slot, service_date)
            candidates = None
            while await self._count_unbound(slot.id, service_date):
                if candidates is None:
                    candidates = await self._eligible_candidates(slot, service_date)
                if not candidates:
                    logger.warning(
                        "No eligible courier left for slot",
                        slot_id=slot.id,
                        sector_id=slot.sector_id,
                        date=service_date.isoformat(),
                    )
                    uncovered.append(slot.id)
                    break
                candidate = candidates.pop(0)
                result = await self.assign_courier_to_slot(
                    candidate["courier_id"],
                    slot.sector_id,
                    slot.id,
                    service_date,
                    self.settings.AUTO_ASSIGN_CAPACITY,
                    source="auto",
                )
                if result.created:
                    created.append(self.assignment_to_dict(result.assignment))
                bound += result.orders_bound

        logger.info(
            "Auto-assign finished",
            date=service_date.isoformat(),
            slots=len(outstanding),
            assignments_created=len(created),
            orders_bound=bound,
            uncovered=len(uncovered),
        )
        return {
            "date": service_date.isoformat(),
            "assignments_created": len(created),
            "assignments": created,
            "orders_bound": bound,
            "uncovered_slot_ids": uncovered,
        }

    async def bind_outstanding_orders(self, slot: DeliverySlot, service_date: date) -> int:
        """
        Give each unbound order of the slot to the open assignment with the
        most spare room. Creates the order's DeliveryUnit and one PickupUnit
        per vendor. Returns how many orders were bound.
        """
        assignments = await self._open_assignments(slot.id, service_date)
        if not assignments:
            return 0
        orders = await self.orders.unbound_orders(service_date, slot_id=slot.id)
        if not orders:
            return 0
        vendors = await self.orders.vendor_ids_by_order([o.id for o in orders])

        load = {a.id: a.current_orders for a in assignments}
        taken: Dict[int, int] = defaultdict(int)
        bound = 0
        for order in orders:
            room = [a for a in assignments if load[a.id] < a.max_orders]
            if not room:
                logger.warning(
                    "Slot orders exceed assigned courier capacity",
                    slot_id=slot.id,
                    date=service_date.isoformat(),
                    unbound=len(orders) - bound,
                )
                break
            target = max(room, key=lambda a: (a.max_orders - load[a.id], -a.id))
            inserted = await insert_ignore(
                self.session,
                DeliveryUnit,
                {
                    "order_id": order.id,
                    "assignment_id": target.id,
                    "courier_id": target.courier_id,
                    "status": DeliveryStatus.PENDING.value,
                },
                ("order_id",),
            )
            if not inserted:
                continue
            for vendor_id in vendors.get(order.id, []):
                await insert_ignore(
                    self.session,
                    PickupUnit,
                    {
                        "order_id": order.id,
                        "vendor_id": vendor_id,
                        "assignment_id": target.id,
                        "courier_id": target.courier_id,
                        "status": PickupStatus.PENDING.value,
                        "failed_attempts": 0,
                    },
                    ("order_id", "vendor_id"),
                )
            order.status = ORDER_STATUS_ASSIGNED
            load[target.id] += 1
            taken[target.id] += 1
            bound += 1

        for assignment in assignments:
            if taken[assignment.id]:
                await self.session.execute(
                    update(DeliveryAssignment)
                    .where(DeliveryAssignment.id == assignment.id)
                    .values(current_orders=DeliveryAssignment.current_orders + taken[assignment.id])
                    .execution_options(synchronize_session=False)
                )
                await self.session.refresh(assignment)
        await self.session.flush()
        return bound

    async def reset_assignments(self, service_date: date) -> Dict[str, Any]:
        """
        Remove every assignment of ``service_date`` together with the
        fulfillment units of orders that have not left their vendors yet.

        Refuses (removing nothing) if any order is already with a courier.
        Delivered or returned orders keep their units for history.
        """
        assignments = list((await self.session.execute(
            select(DeliveryAssignment)
            .where(DeliveryAssignment.assigned_date == service_date)
            .order_by(DeliveryAssignment.id)
        )).scalars().all())

        deliveries = list((await self.session.execute(
            select(DeliveryUnit)
            .join(Order, Order.id == DeliveryUnit.order_id)
            .where(Order.delivery_date == service_date)
            .order_by(DeliveryUnit.order_id)
        )).scalars().all())
        order_ids = [d.order_id for d in deliveries]
        pickups_by_order: Dict[int, List[PickupUnit]] = defaultdict(list)
        if order_ids:
            result = await self.session.execute(select(PickupUnit).where(PickupUnit.order_id.in_(order_ids)))
            for unit in result.scalars().all():
                pickups_by_order[unit.order_id].append(unit)

        in_flight, finished, removable = [], [], []
        for delivery in deliveries:
            status = DeliveryStatus(delivery.status)
            picked = any(p.status == PickupStatus.PICKED_UP.value for p in pickups_by_order[delivery.order_id])
            if status in TERMINAL_DELIVERY_STATUSES:
                finished.append(delivery)
            elif status in IN_FLIGHT_DELIVERY_STATUSES or picked:
                in_flight.append(delivery.order_id)
            else:
                removable.append(delivery)

        if in_flight:
            raise ConflictError(
                f"{len(in_flight)} orders on {service_date.isoformat()} are already with couriers",
                date=service_date.isoformat(),
                order_ids=in_flight,
            )

        reset_order_ids = [d.order_id for d in removable]
        for delivery in removable:
            for unit in pickups_by_order[delivery.order_id]:
                await self.session.delete(unit)
            await self.session.delete(delivery)
        for delivery in finished:
            delivery.assignment_id = None
            for unit in pickups_by_order[delivery.order_id]:
                unit.assignment_id = None
        await self.session.flush()

        if reset_order_ids:
            await self.session.execute(
                update(Order)
                .where(Order.id.in_(reset_order_ids), Order.status == ORDER_STATUS_ASSIGNED)
                .values(status=ORDER_STATUS_PLACED)
                .execution_options(synchronize_session="fetch")
            )
        for assignment in assignments:
            await self.session.delete(assignment)
        await self.session.flush()

        logger.info(
            "Assignments reset",
            date=service_date.isoformat(),
            removed=len(assignments),
            orders_unbound=len(reset_order_ids),
            orders_kept=len(finished),
        )
        return {
            "date": service_date.isoformat(),
            "removed": len(assignments),
            "orders_unbound": len(reset_order_ids),
        }

    async def list_assignments(
        self,
        service_date: date,
        courier_id: Optional[int] = None,
        slot_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            select(DeliveryAssignment, Courier, DeliverySlot)
            .join(Courier, Courier.id == DeliveryAssignment.courier_id)
            .join(DeliverySlot, DeliverySlot.id == DeliveryAssignment.slot_id)
            .where(DeliveryAssignment.assigned_date == service_date)
            .order_by(DeliverySlot.start_time, DeliveryAssignment.id)
        )
        if courier_id is not None:
            query = query.where(DeliveryAssignment.courier_id == courier_id)
        if slot_id is not None:
            query = query.where(DeliveryAssignment.slot_id == slot_id)
        result = await self.session.execute(query)
        return [
            {
                **self.assignment_to_dict(assignment),
                "courier_name": courier.name,
                "slot_name": slot.name,
                "delivery_window": f"{format_clock(slot.start_time)}-{format_clock(slot.end_time)}",
            }
            for assignment, courier, slot in result.all()
        ]

    async def _eligible_candidates(self, slot: DeliverySlot, service_date: date) -> List[Dict[str, Any]]:
        pool = await self.couriers.list_eligible_couriers(slot.sector_id, service_date)
        already = set((await self.session.execute(
            select(DeliveryAssignment.courier_id).where(
                DeliveryAssignment.slot_id == slot.id,
                DeliveryAssignment.assigned_date == service_date,
            )
        )).scalars().all())
        require_verified = self.settings.REQUIRE_VERIFIED_COURIERS
        candidates = [
            c for c in pool
            if c["active"]
            and (c["verified"] or not require_verified)
            and c["daily_assignment_count"] < c["daily_assignment_limit"]
            and c["courier_id"] not in already
        ]
        candidates.sort(key=lambda c: (c["daily_assignment_count"], -c["rating"], c["courier_id"]))
        return candidates

    async def _count_unbound(self, slot_id: int, service_date: date) -> int:
        return len(await self.orders.unbound_orders(service_date, slot_id=slot_id))

    async def _open_assignments(self, slot_id: int, service_date: date) -> List[DeliveryAssignment]:
        result = await self.session.execute(
            select(DeliveryAssignment)
            .where(
                DeliveryAssignment.slot_id == slot_id,
                DeliveryAssignment.assigned_date == service_date,
                DeliveryAssignment.status != AssignmentStatus.COMPLETED.value,
            )
            .order_by(DeliveryAssignment.id)
        )
        return list(result.scalars().all())

    async def _get_by_key(self, courier_id: int, sector_id: int, slot_id: int, service_date: date) -> DeliveryAssignment:
        result = await self.session.execute(
            select(DeliveryAssignment).where(
                DeliveryAssignment.courier_id == courier_id,
                DeliveryAssignment.sector_id == sector_id,
                DeliveryAssignment.slot_id == slot_id,
                DeliveryAssignment.assigned_date == service_date,
            )
        )
        return result.scalar_one()

    async def _get_slot(self, slot_id: int) -> DeliverySlot:
        slot = await self.session.get(DeliverySlot, slot_id)
        if not slot or slot.deleted_at is not None:
            raise NotFoundError("Slot", slot_id)
        return slot

    @staticmethod
    def assignment_to_dict(assignment: DeliveryAssignment) -> Dict[str, Any]:
        return {
            "id": assignment.id,
            "courier_id": assignment.courier_id,
            "sector_id": assignment.sector_id,
            "slot_id": assignment.slot_id,
            "date": assignment.assigned_date.isoformat(),
            "status": assignment.status,
            "max_orders": assignment.max_orders,
            "current_orders": assignment.current_orders,
            "source": assignment.source,
        }


async def auto_assign_and_notify(session: AsyncSession, service_date: date) -> Dict[str, Any]:
    """Run auto-assign as one committed unit of work, then tell the new couriers."""
    engine = AssignmentEngine(session)
    result = await run_with_store_retry(
        session, lambda: engine.auto_assign(service_date), operation="assignment.auto"
    )
    if result["assignments"]:
        await notify_assignments_created(service_date.isoformat(), result["assignments"])
    return result
