"""
Tests for the sector catalog and slot definitions.

Tests cover:
- Slot validation (every violation reported, nothing persisted on failure)
- Slot update/delete guards (committed orders, open work, soft delete)
- Available slots per sector and date (cutoff, weekday, full slots)
- Sector pincode uniqueness and delete guards
"""
import pytest
from datetime import date, datetime, time

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from backend.app.models.slot import DeliverySlot
from backend.app.services.capacity import CapacityLedger
from backend.app.services.delivery_slots import DeliverySlotService, check_slot_definition
from backend.app.services.sectors import SectorService, normalize_pincodes
from backend.tests.conftest import SERVICE_DATE


def slot_payload(sector_id: int, **overrides) -> dict:
    data = {
        "sector_id": sector_id,
        "name": "Evening",
        "start_time": "17:00",
        "end_time": "19:00",
        "cutoff_time": "15:00",
        "pickup_delay_minutes": 30,
        "max_orders": 40,
    }
    data.update(overrides)
    return data


async def slot_count(session: AsyncSession) -> int:
    return await session.scalar(select(func.count(DeliverySlot.id)))


# ============================================
# SLOT VALIDATION
# ============================================

def test_check_slot_definition_accepts_valid_definition():
    """A complete definition comes back cleaned with no errors."""
    clean, errors = check_slot_definition(slot_payload(1, day_of_week=[4, 0, 0]))
    assert errors == []
    assert clean["start_time"] == time(17, 0)
    assert clean["cutoff_time"] == time(15, 0)
    assert clean["day_of_week"] == [0, 4]


def test_check_slot_definition_reports_every_violation():
    """All broken constraints are listed together, not just the first."""
    _, errors = check_slot_definition(slot_payload(
        1,
        start_time="10:00",
        end_time="09:00",
        cutoff_time="11:00",
        pickup_delay_minutes=-5,
        max_orders=0,
    ))
    assert "start_time 10:00 must be before end_time 09:00" in errors
    assert "cutoff_time 11:00 must not be after start_time 10:00" in errors
    assert any(e.startswith("pickup_delay_minutes") for e in errors)
    assert any(e.startswith("max_orders") for e in errors)
    assert len(errors) == 4


def test_check_slot_definition_requires_fields():
    """Missing fields are reported by name; nothing is defaulted."""
    _, errors = check_slot_definition({"name": "Morning"})
    for field in ("sector_id", "start_time", "end_time", "cutoff_time", "pickup_delay_minutes", "max_orders"):
        assert f"{field} is required" in errors


def test_check_slot_definition_rejects_bad_clock_and_weekday():
    """Malformed times and weekday numbers are rejected."""
    _, errors = check_slot_definition(slot_payload(1, end_time="7pm", day_of_week=[7]))
    assert "end_time must be a time in HH:MM format" in errors
    assert any(e.startswith("day_of_week") for e in errors)


def test_check_slot_definition_max_orders_bounds():
    """max_orders must be within 1..200."""
    _, errors = check_slot_definition(slot_payload(1, max_orders=201))
    assert errors == ["max_orders must be between 1 and 200"]
    _, errors = check_slot_definition(slot_payload(1, max_orders=200))
    assert errors == []


def test_check_slot_definition_cutoff_equal_to_start_allowed():
    """Cutoff may coincide with the window start."""
    _, errors = check_slot_definition(slot_payload(1, cutoff_time="17:00"))
    assert errors == []


# ============================================
# SLOT LIFECYCLE
# ============================================

@pytest.mark.asyncio
async def test_create_slot(test_session: AsyncSession, test_sector):
    """create_slot persists the definition and records the base capacity."""
    service = DeliverySlotService(test_session)
    slot = await service.create_slot(slot_payload(test_sector.id))
    assert slot["id"] is not None
    assert slot["start_time"] == "17:00"
    assert slot["max_orders"] == 40
    assert slot["base_max_orders"] == 40
    assert slot["is_active"] is True


@pytest.mark.asyncio
async def test_create_slot_inverted_window_persists_nothing(test_session: AsyncSession, test_sector):
    """start 10:00 / end 09:00 is rejected and no row is written."""
    service = DeliverySlotService(test_session)
    with pytest.raises(ValidationError) as exc_info:
        await service.create_slot(slot_payload(
            test_sector.id, start_time="10:00", end_time="09:00", cutoff_time="08:00"
        ))
    assert "start_time 10:00 must be before end_time 09:00" in exc_info.value.errors
    assert await slot_count(test_session) == 0


@pytest.mark.asyncio
async def test_create_slot_unknown_sector(test_session: AsyncSession):
    """A slot must belong to an existing sector."""
    service = DeliverySlotService(test_session)
    with pytest.raises(ValidationError) as exc_info:
        await service.create_slot(slot_payload(999))
    assert "sector_id 999 does not exist" in exc_info.value.errors


@pytest.mark.asyncio
async def test_update_slot_below_committed(test_session: AsyncSession, test_slot, set_committed):
    """max_orders cannot drop below orders already committed."""
    await set_committed(test_slot.id, 12)
    service = DeliverySlotService(test_session)
    with pytest.raises(ConflictError) as exc_info:
        await service.update_slot(
            test_slot.id,
            slot_payload(test_slot.sector_id, start_time="11:00", end_time="13:00", cutoff_time="10:00", max_orders=10),
            as_of=SERVICE_DATE,
        )
    assert exc_info.value.context["committed"] == 12


@pytest.mark.asyncio
async def test_update_slot_ignores_past_dates(test_session: AsyncSession, test_slot, set_committed):
    """Committed counts before as_of do not block lowering capacity."""
    await set_committed(test_slot.id, 12, service_date=date(2023, 12, 31))
    service = DeliverySlotService(test_session)
    slot = await service.update_slot(
        test_slot.id,
        slot_payload(test_slot.sector_id, max_orders=10),
        as_of=SERVICE_DATE,
    )
    assert slot["max_orders"] == 10
    assert slot["base_max_orders"] == 10
    assert slot["name"] == "Evening"


@pytest.mark.asyncio
async def test_update_slot_keeps_raise_base(test_session: AsyncSession, test_slot):
    """Saving a raised capacity into the definition does not open a second 1.5x raise."""
    await CapacityLedger(test_session).change_capacity(test_slot.id, 45, SERVICE_DATE)
    service = DeliverySlotService(test_session)
    slot = await service.update_slot(test_slot.id, slot_payload(test_slot.sector_id, max_orders=45), as_of=SERVICE_DATE)
    assert (slot["max_orders"], slot["base_max_orders"]) == (45, 30)

    with pytest.raises(ValidationError):
        await CapacityLedger(test_session).change_capacity(test_slot.id, 46, SERVICE_DATE)
    with pytest.raises(ValidationError) as exc_info:
        await service.update_slot(test_slot.id, slot_payload(test_slot.sector_id, max_orders=60), as_of=SERVICE_DATE)
    assert exc_info.value.errors == ["max_orders may not exceed 45 (1.5x the defined 30)"]


@pytest.mark.asyncio
async def test_delete_slot_with_unresolved_orders(
    test_session: AsyncSession, test_slot, test_vendors, make_order
):
    """A slot referenced by a live order cannot be deleted."""
    order = await make_order(test_slot, [test_vendors[0].id])
    service = DeliverySlotService(test_session)
    with pytest.raises(ConflictError) as exc_info:
        await service.delete_slot(test_slot.id, as_of=SERVICE_DATE)
    assert exc_info.value.context["order_ids"] == [order.id]


@pytest.mark.asyncio
async def test_delete_slot_with_history_is_soft(
    test_session: AsyncSession, test_slot, test_vendors, make_order
):
    """Only delivered orders left: the slot is hidden but kept."""
    await make_order(test_slot, [test_vendors[0].id], status="delivered")
    service = DeliverySlotService(test_session)
    result = await service.delete_slot(test_slot.id, as_of=SERVICE_DATE)
    assert result == {"id": test_slot.id, "deleted": True, "soft": True}
    assert await slot_count(test_session) == 1
    with pytest.raises(NotFoundError):
        await service.get_slot(test_slot.id)
    assert await service.list_slots() == []


@pytest.mark.asyncio
async def test_delete_unused_slot_is_hard(test_session: AsyncSession, test_slot, set_committed):
    """A slot without history is removed with its ledger rows."""
    await set_committed(test_slot.id, 0)
    service = DeliverySlotService(test_session)
    result = await service.delete_slot(test_slot.id, as_of=SERVICE_DATE)
    assert result["soft"] is False
    assert await slot_count(test_session) == 0


@pytest.mark.asyncio
async def test_set_active(test_session: AsyncSession, test_slot):
    """Pausing a slot keeps its definition."""
    service = DeliverySlotService(test_session)
    slot = await service.set_active(test_slot.id, False)
    assert slot["is_active"] is False
    assert slot["max_orders"] == 30
    assert await service.list_slots(active_only=True) == []


# ============================================
# AVAILABLE SLOTS
# ============================================

@pytest.mark.asyncio
async def test_available_slots(test_session: AsyncSession, test_slot, set_committed):
    """Open slots report remaining room and their pickup-ready time."""
    await set_committed(test_slot.id, 10)
    service = DeliverySlotService(test_session)
    slots = await service.get_available_slots(test_slot.sector_id, SERVICE_DATE)
    assert len(slots) == 1
    assert slots[0]["available"] == 20
    assert slots[0]["pickup_ready_at"] == "2024-01-01T10:45:00+05:30"


@pytest.mark.asyncio
async def test_available_slots_excludes_full_and_closed(test_session: AsyncSession, test_slot, set_committed):
    """Full slots and slots past their cutoff are not offered."""
    service = DeliverySlotService(test_session)
    after_cutoff = datetime(2024, 1, 1, 10, 1)
    assert await service.get_available_slots(test_slot.sector_id, SERVICE_DATE, now=after_cutoff) == []

    before_cutoff = datetime(2024, 1, 1, 9, 59)
    assert len(await service.get_available_slots(test_slot.sector_id, SERVICE_DATE, now=before_cutoff)) == 1

    await set_committed(test_slot.id, 30)
    assert await service.get_available_slots(test_slot.sector_id, SERVICE_DATE) == []


@pytest.mark.asyncio
async def test_available_slots_respects_weekdays(test_session: AsyncSession, test_slot):
    """A weekend-only slot is not offered on a Monday."""
    test_slot.day_of_week = [5, 6]
    await test_session.commit()
    service = DeliverySlotService(test_session)
    assert await service.get_available_slots(test_slot.sector_id, SERVICE_DATE) == []
    assert len(await service.get_available_slots(test_slot.sector_id, date(2024, 1, 6))) == 1


# ============================================
# SECTORS
# ============================================

def test_normalize_pincodes():
    """Pincodes are stripped, deduplicated and sorted."""
    assert normalize_pincodes([" 560038", 560008, "560038", ""]) == ["560008", "560038"]


@pytest.mark.asyncio
async def test_create_sector_validation(test_session: AsyncSession):
    """Name, city and pincodes are all checked at once."""
    service = SectorService(test_session)
    with pytest.raises(ValidationError) as exc_info:
        await service.create_sector({"name": "", "pincodes": []})
    assert exc_info.value.errors == [
        "name is required",
        "city_name is required",
        "pincodes must be a non-empty list",
    ]


@pytest.mark.asyncio
async def test_create_sector_pincode_claimed(test_session: AsyncSession, test_sector):
    """A pincode may belong to only one active sector."""
    service = SectorService(test_session)
    with pytest.raises(ConflictError) as exc_info:
        await service.create_sector({"name": "HAL", "city_name": "Bengaluru", "pincodes": ["560038", "560017"]})
    assert exc_info.value.context["pincodes"] == ["560038"]

    inactive = await service.create_sector({
        "name": "HAL", "city_name": "Bengaluru", "pincodes": ["560038"], "is_active": False,
    })
    assert inactive["is_active"] is False


@pytest.mark.asyncio
async def test_find_by_pincode(test_session: AsyncSession, test_sector):
    """Lookup returns the active sector serving the pincode."""
    service = SectorService(test_session)
    found = await service.find_by_pincode("560038")
    assert found["id"] == test_sector.id
    assert await service.find_by_pincode("110001") is None


@pytest.mark.asyncio
async def test_delete_sector_with_slots(test_session: AsyncSession, test_slot):
    """A sector that still has slots cannot be deleted."""
    service = SectorService(test_session)
    with pytest.raises(ConflictError):
        await service.delete_sector(test_slot.sector_id)


@pytest.mark.asyncio
async def test_update_sector_referenced_by_orders(
    test_session: AsyncSession, test_slot, test_vendors, make_order
):
    """Once orders reference a sector only its activation may change."""
    await make_order(test_slot, [test_vendors[0].id])
    service = SectorService(test_session)
    with pytest.raises(ConflictError) as exc_info:
        await service.update_sector(test_slot.sector_id, {"pincodes": ["560001"]})
    assert exc_info.value.context["fields"] == ["pincodes"]

    sector = await service.update_sector(test_slot.sector_id, {"is_active": False})
    assert sector["is_active"] is False
