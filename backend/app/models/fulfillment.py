from datetime import datetime
from typing import Optional

from sqlalchemy import String, ForeignKey, Integer, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base, TimestampMixin


class PickupUnit(TimestampMixin, Base):
    """The items of one order that come from one vendor."""
    __tablename__ = 'order_pickups'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    vendor_id: Mapped[int] = mapped_column(ForeignKey('vendors.id'))
    assignment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('delivery_assignments.id', ondelete='SET NULL'), nullable=True
    )
    courier_id: Mapped[Optional[int]] = mapped_column(ForeignKey('couriers.id'), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    en_route_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('order_id', 'vendor_id', name='uq_order_pickups_order_vendor'),
        Index('ix_order_pickups_vendor_id', 'vendor_id'),
        Index('ix_order_pickups_assignment_id', 'assignment_id'),
    )


class DeliveryUnit(TimestampMixin, Base):
    """An order's single end-to-end delivery leg."""
    __tablename__ = 'order_deliveries'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'), unique=True)
    assignment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('delivery_assignments.id', ondelete='SET NULL'), nullable=True
    )
    courier_id: Mapped[Optional[int]] = mapped_column(ForeignKey('couriers.id'), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    out_for_delivery_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index('ix_order_deliveries_assignment_id', 'assignment_id'),
        Index('ix_order_deliveries_courier_id', 'courier_id'),
    )
