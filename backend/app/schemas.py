import datetime as dt
from typing import List, Optional, Union

from pydantic import BaseModel, Field


# --- Sectors ---
class SectorCreate(BaseModel):
    name: Optional[str] = None
    city_name: Optional[str] = None
    pincodes: Optional[List[Union[str, int]]] = None
    is_active: bool = True


class SectorUpdate(BaseModel):
    name: Optional[str] = None
    city_name: Optional[str] = None
    pincodes: Optional[List[Union[str, int]]] = None
    is_active: Optional[bool] = None


class SectorResponse(BaseModel):
    id: int
    name: str
    city_name: str
    pincodes: List[str]
    is_active: bool


# --- Slots ---
# Every field is optional here so the service can report all missing and
# invalid fields in one ValidationError instead of a per-field 422.
class SlotDefinition(BaseModel):
    sector_id: Optional[int] = None
    name: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    cutoff_time: Optional[str] = None
    pickup_delay_minutes: Optional[int] = None
    max_orders: Optional[int] = None
    day_of_week: Optional[List[int]] = None
    is_active: bool = True


class SlotResponse(BaseModel):
    id: int
    sector_id: int
    name: str
    start_time: str
    end_time: str
    cutoff_time: str
    pickup_delay_minutes: int
    max_orders: int
    base_max_orders: int
    is_active: bool
    day_of_week: List[int] = []


class ActiveToggle(BaseModel):
    is_active: bool


class CapacityChange(BaseModel):
    max_orders: int
    as_of: Optional[dt.date] = None


# --- Couriers ---
class CourierCreate(BaseModel):
    profile_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    vehicle_type: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True
    coverage_pincodes: List[Union[str, int]] = []
    max_daily_assignments: Optional[int] = None
    rating: Optional[float] = None


class CourierUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    vehicle_type: Optional[str] = None
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None
    coverage_pincodes: Optional[List[Union[str, int]]] = None
    max_daily_assignments: Optional[int] = None
    rating: Optional[float] = None


# --- Assignments ---
class AssignmentCreate(BaseModel):
    courier_id: int
    sector_id: int
    slot_ids: List[int] = Field(..., min_length=1)
    date: dt.date
    requested_capacity: Optional[int] = None


# --- Fulfillment ---
class CourierAction(BaseModel):
    courier_id: int
    reason: Optional[str] = None


class PickupFailure(BaseModel):
    reason: Optional[str] = None

