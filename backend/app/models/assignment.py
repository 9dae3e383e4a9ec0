import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import String, ForeignKey, Integer, Date, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base, TimestampMixin


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    ACTIVE = "active"
    COMPLETED = "completed"


class DeliveryAssignment(TimestampMixin, Base):
    """Binding of one courier to one slot of one sector on one date."""
    __tablename__ = 'delivery_assignments'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    courier_id: Mapped[int] = mapped_column(ForeignKey('couriers.id'))
    sector_id: Mapped[int] = mapped_column(ForeignKey('sectors.id'))
    slot_id: Mapped[int] = mapped_column(ForeignKey('delivery_slots.id'))
    assigned_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default=AssignmentStatus.ASSIGNED.value)
    # Orders this courier can carry for the slot, and orders bound so far
    max_orders: Mapped[int] = mapped_column(Integer)
    current_orders: Mapped[int] = mapped_column(Integer, default=0)
    # 'manual' or 'auto'
    source: Mapped[str] = mapped_column(String(20), default='manual')
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('courier_id', 'sector_id', 'slot_id', 'assigned_date', name='uq_assignment_key'),
        Index('ix_delivery_assignments_date', 'assigned_date'),
        Index('ix_delivery_assignments_slot_date', 'slot_id', 'assigned_date'),
        Index('ix_delivery_assignments_courier_date', 'courier_id', 'assigned_date'),
    )
