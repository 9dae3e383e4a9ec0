"""Delivery slot definitions: validation, lifecycle and availability per date."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    CAPACITY_RAISE_FACTOR,
    INACTIVE_ORDER_STATUSES,
    MAX_PICKUP_DELAY_MINUTES,
    MAX_SLOT_ORDERS,
    MIN_SLOT_ORDERS,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_RETURNED,
)
from backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.core.time_parsing import format_clock, localize, parse_clock, pickup_ready_at
from backend.app.models.assignment import AssignmentStatus, DeliveryAssignment
from backend.app.models.order import Order
from backend.app.models.sector import Sector
from backend.app.models.slot import DeliverySlot, SlotCapacity
from backend.app.services.capacity import CapacityLedger, raise_ceiling

logger = get_logger(__name__)

# Every invariant-bearing field must be supplied; nothing is defaulted from another field
REQUIRED_FIELDS = (
    "sector_id",
    "name",
    "start_time",
    "end_time",
    "cutoff_time",
    "pickup_delay_minutes",
    "max_orders",
)

# Orders in these statuses no longer need their slot
RESOLVED_ORDER_STATUSES = (ORDER_STATUS_DELIVERED, ORDER_STATUS_RETURNED) + INACTIVE_ORDER_STATUSES


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_slot_definition(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Check a slot definition and return (cleaned values, errors).

    All violations are collected; the caller decides whether to raise.
    """
    errors: List[str] = []
    clean: Dict[str, Any] = {}

    missing = {f for f in REQUIRED_FIELDS if data.get(f) is None or data.get(f) == ""}
    errors.extend(f"{f} is required" for f in REQUIRED_FIELDS if f in missing)

    if "sector_id" not in missing:
        if _is_int(data["sector_id"]):
            clean["sector_id"] = data["sector_id"]
        else:
            errors.append("sector_id must be an integer")

    if "name" not in missing:
        name = str(data["name"]).strip()
        if not name:
            errors.append("name is required")
        elif len(name) > 255:
            errors.append("name must be at most 255 characters")
        clean["name"] = name

    for f in ("start_time", "end_time", "cutoff_time"):
        if f in missing:
            continue
        try:
            clean[f] = parse_clock(data[f])
        except (TypeError, ValueError):
            errors.append(f"{f} must be a time in HH:MM format")

    start, end, cutoff = clean.get("start_time"), clean.get("end_time"), clean.get("cutoff_time")
    if start is not None and end is not None and not start < end:
        errors.append(f"start_time {format_clock(start)} must be before end_time {format_clock(end)}")
    if cutoff is not None and start is not None and cutoff > start:
        errors.append(f"cutoff_time {format_clock(cutoff)} must not be after start_time {format_clock(start)}")

    if "pickup_delay_minutes" not in missing:
        delay = data["pickup_delay_minutes"]
        if not _is_int(delay):
            errors.append("pickup_delay_minutes must be an integer")
        elif not 0 <= delay <= MAX_PICKUP_DELAY_MINUTES:
            errors.append(f"pickup_delay_minutes must be between 0 and {MAX_PICKUP_DELAY_MINUTES}")
        else:
            clean["pickup_delay_minutes"] = delay

    if "max_orders" not in missing:
        max_orders = data["max_orders"]
        if not _is_int(max_orders):
            errors.append("max_orders must be an integer")
        elif not MIN_SLOT_ORDERS <= max_orders <= MAX_SLOT_ORDERS:
            errors.append(f"max_orders must be between {MIN_SLOT_ORDERS} and {MAX_SLOT_ORDERS}")
        else:
            clean["max_orders"] = max_orders

    days = data.get("day_of_week")
    if days is None:
        clean["day_of_week"] = None
    elif not isinstance(days, (list, tuple)) or not all(_is_int(d) and 0 <= d <= 6 for d in days):
        errors.append("day_of_week must be a list of weekday numbers 0 (Mon) to 6 (Sun)")
    else:
        clean["day_of_week"] = sorted(set(days)) or None

    clean["is_active"] = bool(data.get("is_active", True))
    return clean, errors


class DeliverySlotService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = CapacityLedger(session)

    async def list_slots(self, sector_id: Optional[int] = None, active_only: bool = False) -> List[Dict[str, Any]]:
        query = (
            select(DeliverySlot)
            .where(DeliverySlot.deleted_at.is_(None))
            .order_by(DeliverySlot.sector_id, DeliverySlot.start_time, DeliverySlot.id)
        )
        if sector_id is not None:
            query = query.where(DeliverySlot.sector_id == sector_id)
        if active_only:
            query = query.where(DeliverySlot.is_active == True)
        result = await self.session.execute(query)
        return [self.slot_to_dict(s) for s in result.scalars().all()]

    async def get_slot(self, slot_id: int) -> DeliverySlot:
        slot = await self.session.get(DeliverySlot, slot_id)
        if not slot or slot.deleted_at is not None:
            raise NotFoundError("Slot", slot_id)
        return slot

    async def validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Full validation including the owning sector; raises ValidationError listing every problem."""
        clean, errors = check_slot_definition(data)
        if "sector_id" in clean and not await self.session.get(Sector, clean["sector_id"]):
            errors.append(f"sector_id {clean['sector_id']} does not exist")
        if errors:
            raise ValidationError(errors)
        return clean

    async def create_slot(self, data: Dict[str, Any]) -> Dict[str, Any]:
        clean = await self.validate(data)
        slot = DeliverySlot(base_max_orders=clean["max_orders"], **clean)
        self.session.add(slot)
        await self.session.flush()
        logger.info(
            "Slot created",
            slot_id=slot.id,
            sector_id=slot.sector_id,
            window=f"{format_clock(slot.start_time)}-{format_clock(slot.end_time)}",
            max_orders=slot.max_orders,
        )
        return self.slot_to_dict(slot)

    async def update_slot(self, slot_id: int, data: Dict[str, Any], as_of: date) -> Dict[str, Any]:
        """
        Replace a slot definition. max_orders may not undercut orders
        already committed on ``as_of`` or after, nor exceed the raise
        ceiling of the defined base. Lowering it also lowers the base.
        """
        slot = await self.get_slot(slot_id)
        clean = await self.validate(data)

        ceiling = raise_ceiling(slot.base_max_orders)
        if clean["max_orders"] > ceiling:
            raise ValidationError([
                f"max_orders may not exceed {ceiling} ({CAPACITY_RAISE_FACTOR}x the defined {slot.base_max_orders})"
            ])

        committed = await self.ledger.max_committed_from(slot_id, as_of)
        if clean["max_orders"] < committed:
            raise ConflictError(
                f"Slot {slot_id} already has {committed} committed orders",
                slot_id=slot_id,
                committed=committed,
                requested_max_orders=clean["max_orders"],
            )
        if clean["sector_id"] != slot.sector_id:
            referenced = await self._open_assignment_ids(slot_id, as_of) or await self._unresolved_order_ids(slot_id)
            if referenced:
                raise ConflictError(
                    f"Slot {slot_id} cannot move to another sector while it has open work",
                    slot_id=slot_id,
                    ids=referenced,
                )

        for field, value in clean.items():
            setattr(slot, field, value)
        slot.base_max_orders = min(slot.base_max_orders, clean["max_orders"])
        await self.session.flush()
        return self.slot_to_dict(slot)

    async def delete_slot(self, slot_id: int, as_of: date) -> Dict[str, Any]:
        """
        Delete a slot. Refused while open assignments for ``as_of`` or later,
        or unresolved orders, reference it. A slot with history is soft-deleted.
        """
        slot = await self.get_slot(slot_id)
        assignment_ids = await self._open_assignment_ids(slot_id, as_of)
        if assignment_ids:
            raise ConflictError(
                f"Slot {slot_id} has active assignments",
                slot_id=slot_id,
                assignment_ids=assignment_ids,
            )
        order_ids = await self._unresolved_order_ids(slot_id)
        if order_ids:
            raise ConflictError(
                f"Slot {slot_id} has unresolved orders",
                slot_id=slot_id,
                order_ids=order_ids,
            )

        has_history = bool(
            await self.session.scalar(select(func.count(Order.id)).where(Order.slot_id == slot_id))
            or await self.session.scalar(
                select(func.count(DeliveryAssignment.id)).where(DeliveryAssignment.slot_id == slot_id)
            )
        )
        if has_history:
            slot.is_active = False
            slot.deleted_at = datetime.utcnow()
        else:
            await self.session.execute(delete(SlotCapacity).where(SlotCapacity.slot_id == slot_id))
            await self.session.delete(slot)
        await self.session.flush()
        logger.info("Slot deleted", slot_id=slot_id, soft=has_history)
        return {"id": slot_id, "deleted": True, "soft": has_history}

    async def set_active(self, slot_id: int, is_active: bool) -> Dict[str, Any]:
        """Pause or resume a slot without touching its definition."""
        slot = await self.get_slot(slot_id)
        slot.is_active = is_active
        await self.session.flush()
        logger.info("Slot toggled", slot_id=slot_id, is_active=is_active)
        return self.slot_to_dict(slot)

    async def get_available_slots(
        self,
        sector_id: int,
        service_date: date,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Active slots of a sector that serve ``service_date`` and still have
        room. When ``now`` falls on that date, slots past their cutoff are left out.
        """
        tz = get_settings().tz
        result = await self.session.execute(
            select(DeliverySlot)
            .where(
                DeliverySlot.sector_id == sector_id,
                DeliverySlot.is_active == True,
                DeliverySlot.deleted_at.is_(None),
            )
            .order_by(DeliverySlot.start_time, DeliverySlot.id)
        )
        slots = [s for s in result.scalars().all() if s.serves(service_date)]
        local_now = localize(now, tz) if now is not None else None
        if local_now is not None:
            if local_now.date() > service_date:
                return []
            if local_now.date() == service_date:
                slots = [s for s in slots if local_now.time() <= s.cutoff_time]

        counts = await self.ledger.committed_counts([s.id for s in slots], service_date)
        available = []
        for slot in slots:
            remaining = slot.max_orders - counts.get(slot.id, 0)
            if remaining <= 0:
                continue
            available.append({
                **self.slot_to_dict(slot),
                "date": service_date.isoformat(),
                "available": remaining,
                "pickup_ready_at": pickup_ready_at(
                    service_date, slot.cutoff_time, slot.pickup_delay_minutes, tz
                ).isoformat(),
            })
        return available

    async def _open_assignment_ids(self, slot_id: int, as_of: date) -> List[int]:
        result = await self.session.execute(
            select(DeliveryAssignment.id).where(
                DeliveryAssignment.slot_id == slot_id,
                DeliveryAssignment.assigned_date >= as_of,
                DeliveryAssignment.status != AssignmentStatus.COMPLETED.value,
            ).order_by(DeliveryAssignment.id)
        )
        return list(result.scalars().all())

    async def _unresolved_order_ids(self, slot_id: int) -> List[int]:
        result = await self.session.execute(
            select(Order.id).where(
                Order.slot_id == slot_id,
                Order.status.notin_(RESOLVED_ORDER_STATUSES),
            ).order_by(Order.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def slot_to_dict(slot: DeliverySlot) -> Dict[str, Any]:
        return {
            "id": slot.id,
            "sector_id": slot.sector_id,
            "name": slot.name,
            "start_time": format_clock(slot.start_time),
            "end_time": format_clock(slot.end_time),
            "cutoff_time": format_clock(slot.cutoff_time),
            "pickup_delay_minutes": slot.pickup_delay_minutes,
            "max_orders": slot.max_orders,
            "base_max_orders": slot.base_max_orders,
            "is_active": slot.is_active,
            "day_of_week": slot.day_of_week or [],
        }
