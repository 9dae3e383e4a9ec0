from typing import List

from sqlalchemy import String, Boolean, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base, TimestampMixin


class Sector(TimestampMixin, Base):
    __tablename__ = 'sectors'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    city_name: Mapped[str] = mapped_column(String(100))
    # Postal codes served by this sector, e.g. ["560001", "560002"]
    pincodes: Mapped[List[str]] = mapped_column(JSON(), default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index('ix_sectors_city_name', 'city_name'),
        Index('ix_sectors_is_active', 'is_active'),
    )
