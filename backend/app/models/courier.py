from typing import Optional, List

from sqlalchemy import String, Boolean, Integer, DECIMAL, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base, TimestampMixin


class Courier(TimestampMixin, Base):
    __tablename__ = 'couriers'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # Reference to the identity/profile service record
    profile_id: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    vehicle_type: Mapped[str] = mapped_column(String(50), default='bike')
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Pincodes the courier covers; assignment merges the sector's pincodes in
    coverage_pincodes: Mapped[List[str]] = mapped_column(JSON(), default=list)
    # Per-courier override of the daily assignment ceiling (null = settings default)
    max_daily_assignments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rating: Mapped[float] = mapped_column(DECIMAL(3, 2), default=0)
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    successful_deliveries: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index('ix_couriers_active_verified', 'is_active', 'is_verified'),
    )
