"""
Tests for pickup and delivery transitions.

Tests cover:
- Bulk vendor pickup (en route, confirm, skip already picked, failure reporting)
- Delivery gating on completed pickup
- Monotonic delivery transitions and courier ownership
- Assignment activation/completion and courier counters
- Pure status derivation (slot, vendor, order pickup)
"""
import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from backend.app.models.assignment import DeliveryAssignment
from backend.app.services.assignments import AssignmentEngine
from backend.app.services.fulfillment import FulfillmentService
from backend.app.services.fulfillment_states import (
    DELIVERY_TRANSITIONS,
    DeliveryStatus,
    OrderPickupStatus,
    OrderState,
    PickupStatus,
    SlotStatus,
    VendorPickupStatus,
    check_transition,
    derive_order_pickup_status,
    derive_slot_status,
    derive_vendor_status,
)
from backend.tests.conftest import SERVICE_DATE


@pytest.fixture
async def assigned(test_session: AsyncSession, test_slot, test_courier, scenario_orders):
    """Scenario orders bound to test_courier."""
    await AssignmentEngine(test_session).auto_assign(SERVICE_DATE)
    await test_session.commit()
    return scenario_orders


# ============================================
# PICKUP
# ============================================

@pytest.mark.asyncio
async def test_vendor_en_route(test_session: AsyncSession, test_slot, test_vendors, assigned):
    """en route moves only the vendor's pending units."""
    service = FulfillmentService(test_session)
    result = await service.mark_vendor_en_route(test_slot.id, test_vendors[1].id, SERVICE_DATE)
    assert result["en_route"] == 2
    assert result["order_ids"] == [o.id for o in assigned[3:]]

    again = await service.mark_vendor_en_route(test_slot.id, test_vendors[1].id, SERVICE_DATE)
    assert again["en_route"] == 0
    assert again["skipped"] == 2


@pytest.mark.asyncio
async def test_vendor_picked_up(test_session: AsyncSession, test_slot, test_vendors, assigned):
    """Confirming vendor A picks up its three orders and leaves vendor B pending."""
    service = FulfillmentService(test_session)
    result = await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    assert result["picked_up"] == 3
    assert result["orders_pickup_completed"] == [o.id for o in assigned[:3]]

    for order in assigned[:3]:
        view = await service.get_order_fulfillment(order.id)
        assert view["pickups"][0]["status"] == "picked_up"
        assert view["pickup_status"] == "completed"
        assert view["order_status"] == "picked_up"
    for order in assigned[3:]:
        view = await service.get_order_fulfillment(order.id)
        assert view["pickups"][0]["status"] == "pending"
        assert view["order_status"] == "assigned"

    assignment = await test_session.get(DeliveryAssignment, view["assignment_id"])
    assert assignment.status == "active"


@pytest.mark.asyncio
async def test_vendor_picked_up_twice(test_session: AsyncSession, test_slot, test_vendors, assigned):
    """A repeated confirmation skips units already picked up."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    again = await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    assert again["picked_up"] == 0
    assert again["already_picked_up"] == 3


@pytest.mark.asyncio
async def test_multi_vendor_order_waits_for_every_vendor(
    test_session: AsyncSession, test_slot, test_courier, test_vendors, make_order
):
    """An order with two vendors is not picked up until both are collected."""
    order = await make_order(test_slot, [v.id for v in test_vendors])
    await AssignmentEngine(test_session).auto_assign(SERVICE_DATE)
    service = FulfillmentService(test_session)

    first = await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    assert first["orders_pickup_completed"] == []
    view = await service.get_order_fulfillment(order.id)
    assert view["pickup_status"] == "in_progress"

    with pytest.raises(InvalidTransitionError):
        await service.mark_order_delivered(order.id, test_courier.id)

    second = await service.mark_vendor_picked_up(test_slot.id, test_vendors[1].id, SERVICE_DATE)
    assert second["orders_pickup_completed"] == [order.id]


@pytest.mark.asyncio
async def test_pickup_failure(test_session: AsyncSession, test_slot, test_vendors, assigned):
    """A failed visit is recorded; units stay pending for another attempt."""
    service = FulfillmentService(test_session)
    result = await service.report_pickup_failure(test_slot.id, test_vendors[1].id, SERVICE_DATE, "shop closed")
    assert result["order_ids"] == [o.id for o in assigned[3:]]

    view = await service.get_order_fulfillment(assigned[3].id)
    assert view["pickups"][0]["status"] == "pending"
    assert view["pickups"][0]["failed_attempts"] == 1

    await service.mark_vendor_picked_up(test_slot.id, test_vendors[1].id, SERVICE_DATE)
    with pytest.raises(ConflictError):
        await service.report_pickup_failure(test_slot.id, test_vendors[1].id, SERVICE_DATE)


@pytest.mark.asyncio
async def test_pickup_unknown_vendor(test_session: AsyncSession, test_slot, assigned):
    service = FulfillmentService(test_session)
    with pytest.raises(NotFoundError):
        await service.mark_vendor_picked_up(test_slot.id, 999, SERVICE_DATE)


# ============================================
# DELIVERY
# ============================================

@pytest.mark.asyncio
async def test_deliver_before_pickup(test_session: AsyncSession, test_courier, assigned):
    """Delivering an order whose items are still at the vendor is an invalid transition."""
    service = FulfillmentService(test_session)
    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.mark_order_delivered(assigned[0].id, test_courier.id)
    assert exc_info.value.context["current"] == "pending"
    assert exc_info.value.context["requested"] == "delivered"
    assert "pickup not complete" in exc_info.value.message

    with pytest.raises(InvalidTransitionError):
        await service.mark_out_for_delivery(assigned[0].id, test_courier.id)


@pytest.mark.asyncio
async def test_delivery_happy_path(test_session: AsyncSession, test_slot, test_vendors, test_courier, assigned):
    """picked up -> out for delivery -> delivered, with timestamps and counters."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)

    view = await service.mark_out_for_delivery(assigned[0].id, test_courier.id)
    assert view["delivery"]["status"] == "out_for_delivery"
    assert view["order_status"] == "out_for_delivery"
    assert view["delivery"]["out_for_delivery_at"] is not None

    view = await service.mark_order_delivered(assigned[0].id, test_courier.id)
    assert view["delivery"]["status"] == "delivered"
    assert view["order_status"] == "delivered"
    assert test_courier.total_deliveries == 1
    assert test_courier.successful_deliveries == 1


@pytest.mark.asyncio
async def test_deliver_passes_through_out_for_delivery(
    test_session: AsyncSession, test_slot, test_vendors, test_courier, assigned
):
    """Delivering straight from pending records the out-for-delivery step too."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    view = await service.mark_order_delivered(assigned[0].id, test_courier.id)
    assert view["delivery"]["out_for_delivery_at"] is not None
    assert view["delivery"]["delivered_at"] is not None


@pytest.mark.asyncio
async def test_delivery_is_monotonic(test_session: AsyncSession, test_slot, test_vendors, test_courier, assigned):
    """A delivered order cannot fail, be returned, or go out again."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    await service.mark_order_delivered(assigned[0].id, test_courier.id)

    with pytest.raises(InvalidTransitionError):
        await service.mark_delivery_failed(assigned[0].id, test_courier.id)
    with pytest.raises(InvalidTransitionError):
        await service.mark_order_returned(assigned[0].id, test_courier.id)
    with pytest.raises(InvalidTransitionError):
        await service.mark_out_for_delivery(assigned[0].id, test_courier.id)


@pytest.mark.asyncio
async def test_failed_then_returned(test_session: AsyncSession, test_slot, test_vendors, test_courier, assigned):
    """A failed delivery can only end as returned."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    await service.mark_out_for_delivery(assigned[0].id, test_courier.id)

    view = await service.mark_delivery_failed(assigned[0].id, test_courier.id, "customer unreachable")
    assert view["order_status"] == "delivery_failed"
    assert view["delivery"]["notes"] == "customer unreachable"
    with pytest.raises(InvalidTransitionError):
        await service.mark_order_delivered(assigned[0].id, test_courier.id)

    view = await service.mark_order_returned(assigned[0].id, test_courier.id)
    assert view["delivery"]["status"] == "returned"
    assert test_courier.total_deliveries == 1
    assert test_courier.successful_deliveries == 0


@pytest.mark.asyncio
async def test_delivery_wrong_courier(test_session: AsyncSession, test_slot, test_vendors, second_courier, assigned):
    """Only the bound courier may move the delivery."""
    service = FulfillmentService(test_session)
    await service.mark_vendor_picked_up(test_slot.id, test_vendors[0].id, SERVICE_DATE)
    with pytest.raises(ConflictError):
        await service.mark_out_for_delivery(assigned[0].id, second_courier.id)


@pytest.mark.asyncio
async def test_delivery_unassigned_order(test_session: AsyncSession, test_slot, test_vendors, test_courier, make_order):
    """An order without a courier has no delivery to move."""
    order = await make_order(test_slot, [test_vendors[0].id])
    service = FulfillmentService(test_session)
    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.mark_out_for_delivery(order.id, test_courier.id)
    assert exc_info.value.context["current"] == "unassigned"
    view = await service.get_order_fulfillment(order.id)
    assert view["delivery"] is None
    assert view["pickup_status"] == "pending"


@pytest.mark.asyncio
async def test_assignment_completes_when_all_orders_terminal(
    test_session: AsyncSession, test_slot, test_vendors, test_courier, assigned
):
    """The assignment is completed after its last order is delivered or returned."""
    service = FulfillmentService(test_session)
    for vendor in test_vendors:
        await service.mark_vendor_picked_up(test_slot.id, vendor.id, SERVICE_DATE)
    for order in assigned[:-1]:
        await service.mark_order_delivered(order.id, test_courier.id)

    view = await service.get_order_fulfillment(assigned[-1].id)
    assignment = await test_session.get(DeliveryAssignment, view["assignment_id"])
    assert assignment.status == "active"

    await service.mark_out_for_delivery(assigned[-1].id, test_courier.id)
    await service.mark_order_returned(assigned[-1].id, test_courier.id)
    assert assignment.status == "completed"
    assert assignment.completed_at is not None


# ============================================
# STATUS DERIVATION
# ============================================

READY_AT = datetime(2024, 1, 1, 10, 45, tzinfo=timezone(timedelta(hours=5, minutes=30)))


def order_state(*pickups: PickupStatus, delivery: DeliveryStatus = DeliveryStatus.PENDING) -> OrderState:
    return OrderState(pickup_statuses=tuple(pickups), delivery_status=delivery)


def test_slot_status_before_ready_time():
    """Nothing has moved and the pickup-ready time is in the future."""
    states = [order_state(PickupStatus.PENDING)]
    assert derive_slot_status(READY_AT - timedelta(minutes=1), READY_AT, states) == SlotStatus.UPCOMING
    assert derive_slot_status(READY_AT, READY_AT, states) == SlotStatus.READY_FOR_PICKUP


def test_slot_status_picking_up():
    states = [order_state(PickupStatus.EN_ROUTE), order_state(PickupStatus.PENDING)]
    assert derive_slot_status(READY_AT, READY_AT, states) == SlotStatus.PICKING_UP


def test_slot_status_delivering_not_completed():
    """Two delivered and one out for delivery is still delivering."""
    states = [
        order_state(PickupStatus.PICKED_UP, delivery=DeliveryStatus.DELIVERED),
        order_state(PickupStatus.PICKED_UP, delivery=DeliveryStatus.DELIVERED),
        order_state(PickupStatus.PICKED_UP, delivery=DeliveryStatus.OUT_FOR_DELIVERY),
    ]
    assert derive_slot_status(READY_AT, READY_AT, states) == SlotStatus.DELIVERING


def test_slot_status_completed():
    """Delivered and returned orders both count as finished."""
    states = [
        order_state(PickupStatus.PICKED_UP, delivery=DeliveryStatus.DELIVERED),
        order_state(PickupStatus.PICKED_UP, delivery=DeliveryStatus.RETURNED),
    ]
    assert derive_slot_status(READY_AT, READY_AT, states) == SlotStatus.COMPLETED


def test_slot_status_without_orders():
    assert derive_slot_status(READY_AT, READY_AT, []) == SlotStatus.READY_FOR_PICKUP


def test_vendor_status():
    assert derive_vendor_status([]) == VendorPickupStatus.PENDING
    assert derive_vendor_status([
        (PickupStatus.EN_ROUTE, DeliveryStatus.PENDING),
        (PickupStatus.PENDING, DeliveryStatus.PENDING),
    ]) == VendorPickupStatus.EN_ROUTE
    assert derive_vendor_status([
        (PickupStatus.PICKED_UP, DeliveryStatus.OUT_FOR_DELIVERY),
        (PickupStatus.PICKED_UP, DeliveryStatus.DELIVERED),
    ]) == VendorPickupStatus.PICKED_UP
    assert derive_vendor_status([
        (PickupStatus.PICKED_UP, DeliveryStatus.RETURNED),
        (PickupStatus.PICKED_UP, DeliveryStatus.DELIVERED),
    ]) == VendorPickupStatus.COMPLETED


def test_order_pickup_status():
    assert derive_order_pickup_status([]) == OrderPickupStatus.PENDING
    assert derive_order_pickup_status([PickupStatus.PICKED_UP, PickupStatus.PENDING]) == OrderPickupStatus.IN_PROGRESS
    assert derive_order_pickup_status([PickupStatus.PICKED_UP]) == OrderPickupStatus.COMPLETED


def test_delivery_transition_table():
    """Terminal delivery states accept nothing."""
    check_transition("delivery", DELIVERY_TRANSITIONS, 1, DeliveryStatus.FAILED, DeliveryStatus.RETURNED)
    for terminal in (DeliveryStatus.DELIVERED, DeliveryStatus.RETURNED):
        for target in DeliveryStatus:
            with pytest.raises(InvalidTransitionError):
                check_transition("delivery", DELIVERY_TRANSITIONS, 1, terminal, target)
