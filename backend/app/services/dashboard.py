"""
Operator board: Slot -> Vendor -> Order -> Item for one date.

Read-only. Slot and vendor statuses are derived on every call from the
unit states and ``now``; nothing here writes.
"""
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import INACTIVE_ORDER_STATUSES
from backend.app.core.settings import get_settings
from backend.app.core.time_parsing import format_clock, localize, pickup_ready_at
from backend.app.models.assignment import DeliveryAssignment
from backend.app.models.courier import Courier
from backend.app.models.fulfillment import DeliveryUnit, PickupUnit
from backend.app.models.order import Order, OrderItem
from backend.app.models.sector import Sector
from backend.app.models.slot import DeliverySlot
from backend.app.models.vendor import Vendor
from backend.app.services.capacity import CapacityLedger
from backend.app.services.fulfillment_states import (
    DeliveryStatus,
    OrderState,
    PickupStatus,
    SlotStatus,
    VendorPickupStatus,
    derive_slot_status,
    derive_vendor_status,
)


class DashboardProjector:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def slot_board(
        self,
        service_date: date,
        now: Optional[datetime] = None,
        courier_id: Optional[int] = None,
        sector_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        tz = get_settings().tz
        now = localize(now or datetime.now(tz), tz)

        assignment_query = (
            select(DeliveryAssignment, Courier)
            .join(Courier, Courier.id == DeliveryAssignment.courier_id)
            .where(DeliveryAssignment.assigned_date == service_date)
            .order_by(DeliveryAssignment.id)
        )
        if sector_id is not None:
            assignment_query = assignment_query.where(DeliveryAssignment.sector_id == sector_id)
        if courier_id is not None:
            assignment_query = assignment_query.where(DeliveryAssignment.courier_id == courier_id)
        couriers_by_slot: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for assignment, courier in (await self.session.execute(assignment_query)).all():
            couriers_by_slot[assignment.slot_id].append({
                "assignment_id": assignment.id,
                "courier_id": courier.id,
                "name": courier.name,
                "phone": courier.phone,
                "vehicle_type": courier.vehicle_type,
                "status": assignment.status,
                "current_orders": assignment.current_orders,
                "max_orders": assignment.max_orders,
            })

        row_query = (
            select(Order, OrderItem, Vendor)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Vendor, Vendor.id == OrderItem.vendor_id)
            .where(
                Order.delivery_date == service_date,
                Order.status.notin_(INACTIVE_ORDER_STATUSES),
            )
            .order_by(Order.id, OrderItem.id)
        )
        if sector_id is not None:
            row_query = row_query.where(Order.sector_id == sector_id)
        rows = (await self.session.execute(row_query)).all()

        order_ids = sorted({order.id for order, _, _ in rows})
        deliveries: Dict[int, DeliveryUnit] = {}
        pickups: Dict[tuple, PickupUnit] = {}
        if order_ids:
            for unit in (await self.session.execute(
                select(DeliveryUnit).where(DeliveryUnit.order_id.in_(order_ids))
            )).scalars().all():
                deliveries[unit.order_id] = unit
            for unit in (await self.session.execute(
                select(PickupUnit).where(PickupUnit.order_id.in_(order_ids))
            )).scalars().all():
                pickups[(unit.order_id, unit.vendor_id)] = unit

        if courier_id is not None:
            rows = [
                r for r in rows
                if r[0].id in deliveries and deliveries[r[0].id].courier_id == courier_id
            ]

        # slot -> vendor -> order -> items
        tree: Dict[int, Dict[int, Dict[int, List[OrderItem]]]] = defaultdict(lambda: defaultdict(dict))
        orders: Dict[int, Order] = {}
        vendors: Dict[int, Vendor] = {}
        for order, item, vendor in rows:
            orders[order.id] = order
            vendors[vendor.id] = vendor
            tree[order.slot_id][vendor.id].setdefault(order.id, []).append(item)

        slot_ids = sorted(set(tree) | set(couriers_by_slot))
        if not slot_ids:
            return self._board(service_date, now, [], [])

        slots = {
            s.id: s for s in (await self.session.execute(
                select(DeliverySlot).where(DeliverySlot.id.in_(slot_ids))
            )).scalars().all()
        }
        sectors = {
            s.id: s for s in (await self.session.execute(
                select(Sector).where(Sector.id.in_({s.sector_id for s in slots.values()}))
            )).scalars().all()
        }
        committed = await CapacityLedger(self.session).committed_counts(slot_ids, service_date)

        def pickup_status(order_id: int, vendor_id: int) -> PickupStatus:
            unit = pickups.get((order_id, vendor_id))
            return PickupStatus(unit.status) if unit else PickupStatus.PENDING

        def delivery_status(order_id: int) -> DeliveryStatus:
            unit = deliveries.get(order_id)
            return DeliveryStatus(unit.status) if unit else DeliveryStatus.PENDING

        slot_views = []
        all_states: List[OrderState] = []
        for slot_id in sorted(slots, key=lambda i: (slots[i].start_time, i)):
            slot = slots[slot_id]
            vendor_tree = tree.get(slot_id, {})
            slot_order_ids = sorted({oid for by_order in vendor_tree.values() for oid in by_order})
            states = []
            for oid in slot_order_ids:
                vendor_ids = sorted(v for v, by_order in vendor_tree.items() if oid in by_order)
                states.append(OrderState(
                    pickup_statuses=tuple(pickup_status(oid, v) for v in vendor_ids),
                    delivery_status=delivery_status(oid),
                ))
            ready_at = pickup_ready_at(service_date, slot.cutoff_time, slot.pickup_delay_minutes, tz)
            status = derive_slot_status(now, ready_at, states)
            all_states.extend(states)

            vendor_views = []
            for vendor_id in sorted(vendor_tree):
                vendor = vendors[vendor_id]
                by_order = vendor_tree[vendor_id]
                order_views = []
                for oid in sorted(by_order):
                    items = by_order[oid]
                    unit = deliveries.get(oid)
                    order_views.append({
                        "order_id": oid,
                        "order_number": orders[oid].order_number,
                        "address": orders[oid].address,
                        "pincode": orders[oid].delivery_pincode,
                        "courier_id": unit.courier_id if unit else None,
                        "pickup_status": pickup_status(oid, vendor_id).value,
                        "delivery_status": delivery_status(oid).value,
                        "items": [
                            {
                                "item_id": i.id,
                                "product_name": i.product_name,
                                "quantity": i.quantity,
                                "unit_price": float(i.unit_price or 0),
                            }
                            for i in items
                        ],
                    })
                vendor_status = derive_vendor_status(
                    (pickup_status(oid, vendor_id), delivery_status(oid)) for oid in by_order
                )
                vendor_views.append({
                    "vendor_id": vendor_id,
                    "vendor_name": vendor.business_name,
                    "address": vendor.address,
                    "phone": vendor.phone,
                    "pickup_status": vendor_status.value,
                    "order_count": len(by_order),
                    "item_count": sum(i.quantity or 0 for items in by_order.values() for i in items),
                    "orders": order_views,
                })

            slot_committed = committed.get(slot_id, 0)
            sector = sectors.get(slot.sector_id)
            slot_views.append({
                "slot_id": slot.id,
                "slot_name": slot.name,
                "sector_id": slot.sector_id,
                "sector_name": sector.name if sector else None,
                "date": service_date.isoformat(),
                "delivery_window": {
                    "start": format_clock(slot.start_time),
                    "end": format_clock(slot.end_time),
                },
                "cutoff_time": format_clock(slot.cutoff_time),
                "pickup_ready_at": ready_at.isoformat(),
                "status": status.value,
                "committed": slot_committed,
                "max_orders": slot.max_orders,
                "utilization": CapacityLedger.describe(slot, service_date, slot_committed)["utilization"],
                "order_count": len(slot_order_ids),
                "couriers": couriers_by_slot.get(slot_id, []),
                "vendors": vendor_views,
            })
        return self._board(service_date, now, slot_views, all_states)

    @staticmethod
    def _board(
        service_date: date,
        now: datetime,
        slot_views: List[Dict[str, Any]],
        states: List[OrderState],
    ) -> Dict[str, Any]:
        pending_pickups = 0
        in_transit = 0
        delivered = 0
        by_status: Dict[str, int] = {s.value: 0 for s in SlotStatus}
        for view in slot_views:
            by_status[view["status"]] += 1
            pending_pickups += sum(
                1 for v in view["vendors"]
                if v["pickup_status"] in (VendorPickupStatus.PENDING.value, VendorPickupStatus.EN_ROUTE.value)
            )
        for state in states:
            if state.delivery_status == DeliveryStatus.DELIVERED:
                delivered += 1
            elif state.left_vendor and not state.terminal:
                in_transit += 1
        return {
            "date": service_date.isoformat(),
            "generated_at": now.isoformat(),
            "summary": {
                "slots": len(slot_views),
                "orders": sum(v["order_count"] for v in slot_views),
                "pending_vendor_pickups": pending_pickups,
                "in_transit": in_transit,
                "completed_deliveries": delivered,
                "slots_by_status": by_status,
            },
            "slots": slot_views,
        }
