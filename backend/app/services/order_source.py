"""
Read side of the order collaborator: which orders still need a courier,
and what state an order is in. Orders are written elsewhere; the scheduler
only moves their status along with fulfillment.
"""
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import INACTIVE_ORDER_STATUSES
from backend.app.core.exceptions import NotFoundError
from backend.app.models.fulfillment import DeliveryUnit
from backend.app.models.order import Order, OrderItem
from backend.app.models.slot import DeliverySlot, SlotCapacity


class OrderSource:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _unbound_query(self, service_date: date, slot_id: Optional[int] = None):
        query = (
            select(Order)
            .where(
                Order.delivery_date == service_date,
                Order.status.notin_(INACTIVE_ORDER_STATUSES),
                ~exists().where(DeliveryUnit.order_id == Order.id),
            )
            .order_by(Order.id)
        )
        if slot_id is not None:
            query = query.where(Order.slot_id == slot_id)
        return query

    async def unbound_orders(self, service_date: date, slot_id: Optional[int] = None) -> List[Order]:
        """Live orders for the date that have no courier binding yet."""
        result = await self.session.execute(self._unbound_query(service_date, slot_id))
        return list(result.scalars().all())

    async def sector_has_demand(self, sector_id: int, service_date: date) -> bool:
        """True if any slot of the sector has live orders or committed seats on the date."""
        live = await self.session.scalar(
            select(exists().where(
                Order.sector_id == sector_id,
                Order.delivery_date == service_date,
                Order.status.notin_(INACTIVE_ORDER_STATUSES),
            ))
        )
        if live:
            return True
        committed = await self.session.scalar(
            select(exists().where(
                SlotCapacity.slot_id == DeliverySlot.id,
                DeliverySlot.sector_id == sector_id,
                SlotCapacity.service_date == service_date,
                SlotCapacity.committed_orders > 0,
            ))
        )
        return bool(committed)

    async def vendor_ids_by_order(self, order_ids: List[int]) -> Dict[int, List[int]]:
        if not order_ids:
            return {}
        result = await self.session.execute(
            select(OrderItem.order_id, OrderItem.vendor_id)
            .where(OrderItem.order_id.in_(order_ids))
            .distinct()
        )
        vendors: Dict[int, List[int]] = defaultdict(list)
        for order_id, vendor_id in result.all():
            vendors[order_id].append(vendor_id)
        return {order_id: sorted(ids) for order_id, ids in vendors.items()}

    async def list_orders_needing_slot_assignment(self, service_date: date) -> List[Dict[str, Any]]:
        """One row per (order, vendor) for orders of ``service_date`` without a courier."""
        orders = await self.unbound_orders(service_date)
        if not orders:
            return []
        result = await self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id.in_([o.id for o in orders]))
            .order_by(OrderItem.order_id, OrderItem.vendor_id, OrderItem.id)
        )
        items: Dict[int, Dict[int, List[Dict[str, Any]]]] = defaultdict(lambda: defaultdict(list))
        for item in result.scalars().all():
            items[item.order_id][item.vendor_id].append({
                "item_id": item.id,
                "product_name": item.product_name,
                "quantity": item.quantity,
            })

        rows = []
        for order in orders:
            for vendor_id, vendor_items in items[order.id].items():
                rows.append({
                    "order_id": order.id,
                    "slot_id": order.slot_id,
                    "sector_id": order.sector_id,
                    "vendor_id": vendor_id,
                    "items": vendor_items,
                })
        return rows

    async def get_order(self, order_id: int) -> Order:
        order = await self.session.get(Order, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    async def get_order_status(self, order_id: int) -> str:
        return (await self.get_order(order_id)).status
