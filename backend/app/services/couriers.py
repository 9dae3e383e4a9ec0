"""Courier directory: onboarding records, coverage and daily load."""
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import NotFoundError, ValidationError
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.models.assignment import DeliveryAssignment
from backend.app.models.courier import Courier
from backend.app.services.sectors import SectorService, normalize_pincodes

logger = get_logger(__name__)

VEHICLE_TYPES = ("bike", "scooter", "car", "van", "bicycle")


class CourierService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_couriers(self, active_only: bool = False) -> List[Dict[str, Any]]:
        query = select(Courier).order_by(Courier.id)
        if active_only:
            query = query.where(Courier.is_active == True)
        result = await self.session.execute(query)
        return [self.courier_to_dict(c) for c in result.scalars().all()]

    async def get_courier(self, courier_id: int) -> Courier:
        courier = await self.session.get(Courier, courier_id)
        if not courier:
            raise NotFoundError("Courier", courier_id)
        return courier

    async def create_courier(self, data: Dict[str, Any]) -> Dict[str, Any]:
        errors = []
        profile_id = str(data.get("profile_id") or "").strip()
        if not profile_id:
            errors.append("profile_id is required")
        errors.extend(self._check_common(data))
        if profile_id:
            existing = await self.session.scalar(select(Courier.id).where(Courier.profile_id == profile_id))
            if existing:
                errors.append(f"profile_id {profile_id} is already registered")
        if errors:
            raise ValidationError(errors)

        courier = Courier(
            profile_id=profile_id,
            name=data.get("name"),
            phone=data.get("phone"),
            vehicle_type=data.get("vehicle_type") or "bike",
            is_verified=bool(data.get("is_verified", False)),
            is_active=bool(data.get("is_active", True)),
            coverage_pincodes=normalize_pincodes(data.get("coverage_pincodes")),
            max_daily_assignments=data.get("max_daily_assignments"),
            rating=data.get("rating") or 0,
        )
        self.session.add(courier)
        await self.session.flush()
        logger.info("Courier onboarded", courier_id=courier.id, vehicle_type=courier.vehicle_type)
        return self.courier_to_dict(courier)

    async def update_courier(self, courier_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        courier = await self.get_courier(courier_id)
        errors = self._check_common(data)
        if errors:
            raise ValidationError(errors)
        for field in ("name", "phone", "vehicle_type", "is_verified", "is_active", "max_daily_assignments", "rating"):
            if field in data and data[field] is not None:
                setattr(courier, field, data[field])
        if data.get("coverage_pincodes") is not None:
            courier.coverage_pincodes = normalize_pincodes(data["coverage_pincodes"])
        await self.session.flush()
        return self.courier_to_dict(courier)

    async def merge_coverage(self, courier: Courier, pincodes: List[str]) -> List[str]:
        """Union ``pincodes`` into the courier's coverage. Returns the pincodes that were new."""
        current = set(courier.coverage_pincodes or [])
        added = sorted(set(pincodes) - current)
        if added:
            courier.coverage_pincodes = normalize_pincodes(current | set(pincodes))
            await self.session.flush()
        return added

    async def daily_assignment_counts(self, service_date: date) -> Dict[int, int]:
        result = await self.session.execute(
            select(DeliveryAssignment.courier_id, func.count(DeliveryAssignment.id))
            .where(DeliveryAssignment.assigned_date == service_date)
            .group_by(DeliveryAssignment.courier_id)
        )
        return {courier_id: count for courier_id, count in result.all()}

    async def list_eligible_couriers(self, sector_id: int, service_date: date) -> List[Dict[str, Any]]:
        """
        Couriers whose coverage overlaps the sector's pincodes, with the
        flags and daily load the assignment policy filters on. Inactive and
        unverified couriers are included so callers can apply their own policy.
        """
        sector = await SectorService(self.session).get_sector(sector_id)
        sector_pincodes = set(sector.pincodes or [])
        counts = await self.daily_assignment_counts(service_date)
        default_limit = get_settings().COURIER_DAILY_ASSIGNMENT_LIMIT

        result = await self.session.execute(select(Courier).order_by(Courier.id))
        eligible = []
        for courier in result.scalars().all():
            coverage = set(courier.coverage_pincodes or [])
            if not coverage & sector_pincodes:
                continue
            eligible.append({
                "courier_id": courier.id,
                "name": courier.name,
                "active": courier.is_active,
                "verified": courier.is_verified,
                "coverage_pincodes": sorted(coverage),
                "daily_assignment_count": counts.get(courier.id, 0),
                "daily_assignment_limit": courier.max_daily_assignments or default_limit,
                "rating": float(courier.rating or 0),
            })
        return eligible

    async def record_delivery_outcome(self, courier_id: int, successful: bool) -> None:
        courier = await self.get_courier(courier_id)
        courier.total_deliveries = (courier.total_deliveries or 0) + 1
        if successful:
            courier.successful_deliveries = (courier.successful_deliveries or 0) + 1

    @staticmethod
    def _check_common(data: Dict[str, Any]) -> List[str]:
        errors = []
        vehicle = data.get("vehicle_type")
        if vehicle is not None and vehicle not in VEHICLE_TYPES:
            errors.append(f"vehicle_type must be one of {', '.join(VEHICLE_TYPES)}")
        limit = data.get("max_daily_assignments")
        if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool) or limit < 1):
            errors.append("max_daily_assignments must be a positive integer")
        rating = data.get("rating")
        if rating is not None:
            try:
                if not 0 <= float(rating) <= 5:
                    errors.append("rating must be between 0 and 5")
            except (TypeError, ValueError):
                errors.append("rating must be a number")
        return errors

    @staticmethod
    def courier_to_dict(courier: Courier) -> Dict[str, Any]:
        return {
            "id": courier.id,
            "profile_id": courier.profile_id,
            "name": courier.name,
            "phone": courier.phone,
            "vehicle_type": courier.vehicle_type,
            "is_verified": courier.is_verified,
            "is_active": courier.is_active,
            "coverage_pincodes": list(courier.coverage_pincodes or []),
            "max_daily_assignments": courier.max_daily_assignments,
            "rating": float(courier.rating or 0),
            "total_deliveries": courier.total_deliveries or 0,
            "successful_deliveries": courier.successful_deliveries or 0,
        }
