"""
Capacity ledger: committed orders per (slot, date) against the slot ceiling.

Admission is a single conditional UPDATE (``committed < max_orders``), so two
callers racing for the last seat cannot both win: the database serializes the
row update and only one sees rowcount 1.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Any, Iterable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    AUTO_PAUSE_THRESHOLD,
    CAPACITY_RAISE_FACTOR,
    MIN_SLOT_ORDERS,
    NEAR_CAPACITY_THRESHOLD,
)
from backend.app.core.exceptions import (
    CapacityExceeded,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from backend.app.core.logging import get_logger
from backend.app.core.metrics import slot_admissions_total
from backend.app.core.settings import get_settings
from backend.app.core.time_parsing import format_clock, localize
from backend.app.core.upsert import insert_ignore
from backend.app.models.slot import DeliverySlot, SlotCapacity

logger = get_logger(__name__)


def raise_ceiling(base_max_orders: int) -> int:
    """Highest max_orders reachable through a runtime capacity change."""
    return math.floor(base_max_orders * CAPACITY_RAISE_FACTOR)


@dataclass
class Admission:
    slot_id: int
    service_date: date
    admitted: bool
    committed: int
    max_orders: int
    rejection: Optional[CapacityExceeded] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "date": self.service_date.isoformat(),
            "admitted": self.admitted,
            "committed": self.committed,
            "max_orders": self.max_orders,
        }


class CapacityLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def admit(self, slot_id: int, service_date: date, now: Optional[datetime] = None) -> Admission:
        """
        Reserve one order seat in ``slot_id`` on ``service_date``.

        Returns an Admission; when the slot is full ``admitted`` is False and
        ``rejection`` holds the CapacityExceeded describing the counts.
        If ``now`` is given, admissions after the slot cutoff are refused.
        """
        slot = await self._get_open_slot(slot_id, service_date)
        if now is not None:
            self._check_cutoff(slot, service_date, now)

        await insert_ignore(
            self.session,
            SlotCapacity,
            {"slot_id": slot_id, "service_date": service_date, "committed_orders": 0},
            ("slot_id", "service_date"),
        )
        ceiling = select(DeliverySlot.max_orders).where(DeliverySlot.id == slot_id).scalar_subquery()
        result = await self.session.execute(
            update(SlotCapacity)
            .where(
                SlotCapacity.slot_id == slot_id,
                SlotCapacity.service_date == service_date,
                SlotCapacity.committed_orders < ceiling,
            )
            .values(committed_orders=SlotCapacity.committed_orders + 1)
            .execution_options(synchronize_session=False)
        )
        admitted = result.rowcount == 1
        committed = await self.committed(slot_id, service_date)

        if admitted:
            slot_admissions_total.labels(result="admitted").inc()
            return Admission(slot_id, service_date, True, committed, slot.max_orders)

        slot_admissions_total.labels(result="rejected").inc()
        logger.info(
            "Slot full, admission rejected",
            slot_id=slot_id,
            date=service_date.isoformat(),
            committed=committed,
            max_orders=slot.max_orders,
        )
        rejection = CapacityExceeded(slot_id, service_date.isoformat(), committed, slot.max_orders)
        return Admission(slot_id, service_date, False, committed, slot.max_orders, rejection)

    async def release(self, slot_id: int, service_date: date) -> int:
        """Give back one seat (order cancelled). Returns the new committed count."""
        await self._get_slot(slot_id)
        result = await self.session.execute(
            update(SlotCapacity)
            .where(
                SlotCapacity.slot_id == slot_id,
                SlotCapacity.service_date == service_date,
                SlotCapacity.committed_orders > 0,
            )
            .values(committed_orders=SlotCapacity.committed_orders - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"Slot {slot_id} has no committed orders on {service_date.isoformat()}",
                slot_id=slot_id,
                date=service_date.isoformat(),
                committed=0,
            )
        slot_admissions_total.labels(result="released").inc()
        return await self.committed(slot_id, service_date)

    async def committed(self, slot_id: int, service_date: date) -> int:
        value = await self.session.scalar(
            select(SlotCapacity.committed_orders).where(
                SlotCapacity.slot_id == slot_id,
                SlotCapacity.service_date == service_date,
            )
        )
        return value or 0

    async def committed_counts(self, slot_ids: Iterable[int], service_date: date) -> Dict[int, int]:
        """Batch lookup of committed counts for several slots on one date."""
        slot_ids = list(slot_ids)
        if not slot_ids:
            return {}
        result = await self.session.execute(
            select(SlotCapacity.slot_id, SlotCapacity.committed_orders).where(
                SlotCapacity.slot_id.in_(slot_ids),
                SlotCapacity.service_date == service_date,
            )
        )
        return {slot_id: count for slot_id, count in result.all()}

    async def max_committed_from(self, slot_id: int, as_of: date) -> int:
        """Largest committed count for ``slot_id`` on ``as_of`` or any later date."""
        value = await self.session.scalar(
            select(func.max(SlotCapacity.committed_orders)).where(
                SlotCapacity.slot_id == slot_id,
                SlotCapacity.service_date >= as_of,
            )
        )
        return value or 0

    async def utilization(self, slot_id: int, service_date: date) -> float:
        slot = await self._get_slot(slot_id)
        committed = await self.committed(slot_id, service_date)
        return self._ratio(committed, slot.max_orders)

    async def snapshot(self, slot_id: int, service_date: date) -> Dict[str, Any]:
        """Counts plus the policy flags downstream screens act on."""
        slot = await self._get_slot(slot_id)
        committed = await self.committed(slot_id, service_date)
        return self.describe(slot, service_date, committed)

    async def change_capacity(self, slot_id: int, max_orders, as_of: date) -> Dict[str, Any]:
        """
        Runtime capacity change. The new ceiling may go up to 1.5x the
        operator-defined max_orders and never below what is already
        committed for ``as_of`` or later dates.
        """
        slot = await self._get_slot(slot_id)
        ceiling = raise_ceiling(slot.base_max_orders)
        if isinstance(max_orders, bool) or not isinstance(max_orders, int):
            raise ValidationError(["max_orders must be an integer"])
        if max_orders < MIN_SLOT_ORDERS or max_orders > ceiling:
            raise ValidationError([
                f"max_orders must be between {MIN_SLOT_ORDERS} and {ceiling} "
                f"({CAPACITY_RAISE_FACTOR}x the defined {slot.base_max_orders})"
            ])

        committed = await self.max_committed_from(slot_id, as_of)
        if max_orders < committed:
            raise ConflictError(
                f"Slot {slot_id} already has {committed} committed orders",
                slot_id=slot_id,
                committed=committed,
                requested_max_orders=max_orders,
            )

        previous = slot.max_orders
        slot.max_orders = max_orders
        await self.session.flush()
        logger.info(
            "Slot capacity changed",
            slot_id=slot_id,
            previous=previous,
            max_orders=max_orders,
            base_max_orders=slot.base_max_orders,
        )
        return self.describe(slot, as_of, await self.committed(slot_id, as_of))

    @classmethod
    def describe(cls, slot: DeliverySlot, service_date: date, committed: int) -> Dict[str, Any]:
        ratio = cls._ratio(committed, slot.max_orders)
        return {
            "slot_id": slot.id,
            "date": service_date.isoformat(),
            "committed": committed,
            "max_orders": slot.max_orders,
            "base_max_orders": slot.base_max_orders,
            "remaining": max(0, slot.max_orders - committed),
            "utilization": round(ratio, 4),
            "near_capacity": ratio > NEAR_CAPACITY_THRESHOLD,
            "auto_pause_eligible": ratio > AUTO_PAUSE_THRESHOLD,
            "raise_ceiling": raise_ceiling(slot.base_max_orders),
        }

    @staticmethod
    def _ratio(committed: int, max_orders: int) -> float:
        if not max_orders:
            return 1.0
        return min(1.0, max(0.0, committed / max_orders))

    def _check_cutoff(self, slot: DeliverySlot, service_date: date, now: datetime) -> None:
        local_now = localize(now, get_settings().tz)
        if local_now.date() > service_date or (
            local_now.date() == service_date and local_now.time() > slot.cutoff_time
        ):
            raise ConflictError(
                f"Slot {slot.id} closed for {service_date.isoformat()} at {format_clock(slot.cutoff_time)}",
                slot_id=slot.id,
                date=service_date.isoformat(),
                cutoff_time=format_clock(slot.cutoff_time),
            )

    async def _get_slot(self, slot_id: int) -> DeliverySlot:
        slot = await self.session.get(DeliverySlot, slot_id)
        if not slot or slot.deleted_at is not None:
            raise NotFoundError("Slot", slot_id)
        return slot

    async def _get_open_slot(self, slot_id: int, service_date: date) -> DeliverySlot:
        slot = await self._get_slot(slot_id)
        if not slot.is_active or not slot.serves(service_date):
            raise ConflictError(
                f"Slot {slot_id} does not take orders on {service_date.isoformat()}",
                slot_id=slot_id,
                date=service_date.isoformat(),
                is_active=slot.is_active,
            )
        return slot
