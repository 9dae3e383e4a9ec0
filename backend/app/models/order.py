from datetime import datetime, date
from typing import Optional

from sqlalchemy import BigInteger, String, ForeignKey, DateTime, DECIMAL, Text, Index, Date, Integer
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base


class Order(Base):
    """Customer order as written by the order-creation collaborator."""
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    sector_id: Mapped[int] = mapped_column(ForeignKey('sectors.id'))
    slot_id: Mapped[int] = mapped_column(ForeignKey('delivery_slots.id'))
    delivery_date: Mapped[date] = mapped_column(Date)
    delivery_pincode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_amount: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    status: Mapped[str] = mapped_column(String(50), default='placed')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_orders_status', 'status'),
        Index('ix_orders_slot_date', 'slot_id', 'delivery_date'),
        Index('ix_orders_delivery_date', 'delivery_date'),
    )


class OrderItem(Base):
    __tablename__ = 'order_items'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    vendor_id: Mapped[int] = mapped_column(ForeignKey('vendors.id'))
    product_name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)

    __table_args__ = (
        Index('ix_order_items_order_id', 'order_id'),
        Index('ix_order_items_vendor_id', 'vendor_id'),
    )
