from datetime import date, datetime, time
from typing import Optional, List

from sqlalchemy import String, ForeignKey, Integer, Boolean, Date, DateTime, Time, Index, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base, TimestampMixin


class DeliverySlot(TimestampMixin, Base):
    __tablename__ = 'delivery_slots'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sector_id: Mapped[int] = mapped_column(ForeignKey('sectors.id'))
    name: Mapped[str] = mapped_column(String(255))
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    cutoff_time: Mapped[time] = mapped_column(Time)
    pickup_delay_minutes: Mapped[int] = mapped_column(Integer)
    # Effective ceiling used for admission; may be raised at runtime up to 1.5x base_max_orders
    max_orders: Mapped[int] = mapped_column(Integer)
    # Ceiling as last set by an operator create/update
    base_max_orders: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Weekdays served, 0=Mon .. 6=Sun. null/empty = every day
    day_of_week: Mapped[Optional[List[int]]] = mapped_column(JSON(), nullable=True)
    # Soft delete: slots referenced by past orders are kept for history
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_delivery_slots_sector_id', 'sector_id'),
        Index('ix_delivery_slots_sector_active', 'sector_id', 'is_active'),
    )

    def serves(self, service_date: date) -> bool:
        """True if the slot operates on the weekday of ``service_date``."""
        if not self.day_of_week:
            return True
        return service_date.weekday() in self.day_of_week


class SlotCapacity(Base):
    """Committed-order counter for one slot on one date."""
    __tablename__ = 'slot_capacity'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey('delivery_slots.id', ondelete='CASCADE'))
    service_date: Mapped[date] = mapped_column(Date)
    committed_orders: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint('slot_id', 'service_date', name='uq_slot_capacity_slot_date'),
        Index('ix_slot_capacity_service_date', 'service_date'),
    )
