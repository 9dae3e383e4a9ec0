"""Sector catalog: service areas and the pincodes they cover."""
from typing import List, Dict, Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from backend.app.core.logging import get_logger
from backend.app.models.order import Order
from backend.app.models.sector import Sector
from backend.app.models.slot import DeliverySlot

logger = get_logger(__name__)


def normalize_pincodes(values) -> List[str]:
    """Strip, dedupe and sort pincodes; integers are accepted and stringified."""
    return sorted({str(v).strip() for v in (values or []) if str(v).strip()})


class SectorService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_sectors(self, city_name: Optional[str] = None, active_only: bool = False) -> List[Dict[str, Any]]:
        query = select(Sector).order_by(Sector.city_name, Sector.name, Sector.id)
        if city_name:
            query = query.where(Sector.city_name == city_name)
        if active_only:
            query = query.where(Sector.is_active == True)
        result = await self.session.execute(query)
        return [self.sector_to_dict(s) for s in result.scalars().all()]

    async def get_sector(self, sector_id: int) -> Sector:
        sector = await self.session.get(Sector, sector_id)
        if not sector:
            raise NotFoundError("Sector", sector_id)
        return sector

    async def find_by_pincode(self, pincode: str) -> Optional[Dict[str, Any]]:
        """Active sector serving ``pincode``, or None."""
        pincode = str(pincode).strip()
        result = await self.session.execute(
            select(Sector).where(Sector.is_active == True).order_by(Sector.id)
        )
        for sector in result.scalars().all():
            if pincode in (sector.pincodes or []):
                return self.sector_to_dict(sector)
        return None

    async def create_sector(self, data: Dict[str, Any]) -> Dict[str, Any]:
        clean = self.validate(data)
        if clean["is_active"]:
            await self._check_pincodes_unclaimed(clean["pincodes"])
        sector = Sector(**clean)
        self.session.add(sector)
        await self.session.flush()
        logger.info("Sector created", sector_id=sector.id, pincodes=len(sector.pincodes))
        return self.sector_to_dict(sector)

    async def update_sector(self, sector_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        sector = await self.get_sector(sector_id)
        merged = {
            "name": sector.name,
            "city_name": sector.city_name,
            "pincodes": sector.pincodes,
            "is_active": sector.is_active,
        }
        merged.update({k: v for k, v in data.items() if v is not None})
        clean = self.validate(merged)
        changed = [f for f in ("name", "city_name", "pincodes") if clean[f] != getattr(sector, f)]
        if changed and await self._order_count(sector_id):
            raise ConflictError(
                f"Sector {sector_id} is referenced by orders; only activation may change",
                sector_id=sector_id,
                fields=changed,
            )
        if clean["is_active"]:
            await self._check_pincodes_unclaimed(clean["pincodes"], exclude_sector_id=sector_id)
        for field, value in clean.items():
            setattr(sector, field, value)
        await self.session.flush()
        return self.sector_to_dict(sector)

    async def set_active(self, sector_id: int, is_active: bool) -> Dict[str, Any]:
        sector = await self.get_sector(sector_id)
        if is_active and not sector.is_active:
            await self._check_pincodes_unclaimed(sector.pincodes or [], exclude_sector_id=sector_id)
        sector.is_active = is_active
        await self.session.flush()
        logger.info("Sector toggled", sector_id=sector_id, is_active=is_active)
        return self.sector_to_dict(sector)

    async def delete_sector(self, sector_id: int) -> bool:
        """Delete a sector that no slot or order references."""
        sector = await self.get_sector(sector_id)
        slot_count = await self.session.scalar(
            select(func.count(DeliverySlot.id)).where(DeliverySlot.sector_id == sector_id)
        )
        order_count = await self._order_count(sector_id)
        if slot_count or order_count:
            raise ConflictError(
                f"Sector {sector_id} still has slots or orders; deactivate it instead",
                sector_id=sector_id,
                slots=slot_count or 0,
                orders=order_count or 0,
            )
        await self.session.delete(sector)
        await self.session.flush()
        return True

    @staticmethod
    def validate(data: Dict[str, Any]) -> Dict[str, Any]:
        errors = []
        name = (data.get("name") or "").strip()
        city_name = (data.get("city_name") or "").strip()
        if not name:
            errors.append("name is required")
        if not city_name:
            errors.append("city_name is required")
        raw = data.get("pincodes")
        if not isinstance(raw, (list, tuple)) or not raw:
            errors.append("pincodes must be a non-empty list")
            pincodes = []
        else:
            pincodes = normalize_pincodes(raw)
            bad = [p for p in pincodes if not p.isdigit()]
            if bad:
                errors.append(f"pincodes must be numeric: {', '.join(bad)}")
        if errors:
            raise ValidationError(errors)
        return {
            "name": name,
            "city_name": city_name,
            "pincodes": pincodes,
            "is_active": bool(data.get("is_active", True)),
        }

    async def _check_pincodes_unclaimed(self, pincodes: List[str], exclude_sector_id: Optional[int] = None) -> None:
        """A pincode may belong to at most one active sector."""
        query = select(Sector).where(Sector.is_active == True)
        if exclude_sector_id is not None:
            query = query.where(Sector.id != exclude_sector_id)
        result = await self.session.execute(query)
        wanted = set(pincodes)
        for other in result.scalars().all():
            clash = sorted(wanted & set(other.pincodes or []))
            if clash:
                raise ConflictError(
                    f"Pincodes already served by sector {other.id}",
                    sector_id=other.id,
                    pincodes=clash,
                )

    async def _order_count(self, sector_id: int) -> int:
        count = await self.session.scalar(
            select(func.count(Order.id)).where(Order.sector_id == sector_id)
        )
        return count or 0

    @staticmethod
    def sector_to_dict(sector: Sector) -> Dict[str, Any]:
        return {
            "id": sector.id,
            "name": sector.name,
            "city_name": sector.city_name,
            "pincodes": list(sector.pincodes or []),
            "is_active": sector.is_active,
        }
