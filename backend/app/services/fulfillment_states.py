"""
Closed state sets, transition tables and derived (never stored) statuses
for pickup and delivery.

Every mutator in FulfillmentService goes through ``check_transition``; the
slot and vendor statuses shown to operators are pure functions of the
unit states recomputed on each read.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Tuple, TypeVar

from backend.app.core.exceptions import InvalidTransitionError


class PickupStatus(str, enum.Enum):
    PENDING = "pending"
    EN_ROUTE = "en_route"
    PICKED_UP = "picked_up"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class SlotStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    READY_FOR_PICKUP = "ready_for_pickup"
    PICKING_UP = "picking_up"
    DELIVERING = "delivering"
    COMPLETED = "completed"


class VendorPickupStatus(str, enum.Enum):
    PENDING = "pending"
    EN_ROUTE = "en_route"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"


class OrderPickupStatus(str, enum.Enum):
    """Aggregate of an order's pickup units."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# A failed pickup leaves the unit where it is; operators re-trigger en_route.
PICKUP_TRANSITIONS: Dict[PickupStatus, FrozenSet[PickupStatus]] = {
    PickupStatus.PENDING: frozenset({PickupStatus.EN_ROUTE, PickupStatus.PICKED_UP}),
    PickupStatus.EN_ROUTE: frozenset({PickupStatus.PICKED_UP}),
    PickupStatus.PICKED_UP: frozenset(),
}

DELIVERY_TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.OUT_FOR_DELIVERY}),
    DeliveryStatus.OUT_FOR_DELIVERY: frozenset({
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
        DeliveryStatus.RETURNED,
    }),
    DeliveryStatus.FAILED: frozenset({DeliveryStatus.RETURNED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.RETURNED: frozenset(),
}

TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.RETURNED})

# Delivery states that mean the order is with the courier
IN_FLIGHT_DELIVERY_STATUSES = frozenset({DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED})

S = TypeVar("S", PickupStatus, DeliveryStatus)


def check_transition(
    machine: str,
    table: Dict[S, FrozenSet[S]],
    entity_id,
    current: S,
    requested: S,
) -> None:
    """Raise InvalidTransitionError unless ``current -> requested`` is in ``table``."""
    if requested not in table[current]:
        raise InvalidTransitionError(machine, entity_id, current.value, requested.value)


@dataclass(frozen=True)
class OrderState:
    """Snapshot of one order's pickup units and delivery unit."""
    pickup_statuses: Tuple[PickupStatus, ...]
    delivery_status: DeliveryStatus

    @property
    def pickup_complete(self) -> bool:
        return bool(self.pickup_statuses) and all(
            s == PickupStatus.PICKED_UP for s in self.pickup_statuses
        )

    @property
    def left_vendor(self) -> bool:
        """Some items are with the courier, or the delivery leg has started."""
        return (
            any(s == PickupStatus.PICKED_UP for s in self.pickup_statuses)
            or self.delivery_status != DeliveryStatus.PENDING
        )

    @property
    def terminal(self) -> bool:
        return self.delivery_status in TERMINAL_DELIVERY_STATUSES


def derive_order_pickup_status(pickup_statuses: Iterable[PickupStatus]) -> OrderPickupStatus:
    statuses = list(pickup_statuses)
    if statuses and all(s == PickupStatus.PICKED_UP for s in statuses):
        return OrderPickupStatus.COMPLETED
    if any(s != PickupStatus.PENDING for s in statuses):
        return OrderPickupStatus.IN_PROGRESS
    return OrderPickupStatus.PENDING


def derive_slot_status(now: datetime, ready_at: datetime, orders: Iterable[OrderState]) -> SlotStatus:
    """
    Slot status from (now, pickup-ready time, order states).

    completed   every order has reached a terminal delivery state
    delivering  some order has been picked up or is out for delivery
    picking_up  couriers are en route but nothing is picked up yet
    ready_for_pickup / upcoming  decided by ``now`` against ``ready_at``
    """
    orders = list(orders)
    if orders and all(o.terminal for o in orders):
        return SlotStatus.COMPLETED
    if any(o.left_vendor for o in orders):
        return SlotStatus.DELIVERING
    if any(PickupStatus.EN_ROUTE in o.pickup_statuses for o in orders):
        return SlotStatus.PICKING_UP
    if now >= ready_at:
        return SlotStatus.READY_FOR_PICKUP
    return SlotStatus.UPCOMING


def derive_vendor_status(units: Iterable[Tuple[PickupStatus, DeliveryStatus]]) -> VendorPickupStatus:
    """Status of one vendor's pickup stop from (pickup, delivery) pairs of its orders."""
    units = list(units)
    if not units:
        return VendorPickupStatus.PENDING
    if all(d in TERMINAL_DELIVERY_STATUSES for _, d in units):
        return VendorPickupStatus.COMPLETED
    if all(p == PickupStatus.PICKED_UP for p, _ in units):
        return VendorPickupStatus.PICKED_UP
    if any(p == PickupStatus.EN_ROUTE for p, _ in units):
        return VendorPickupStatus.EN_ROUTE
    return VendorPickupStatus.PENDING
