# backend/app/services/__init__.py
"""
Services layer for the fulfillment scheduler.
Keeps API endpoints thin and business logic testable and reusable.
"""

from backend.app.services.sectors import SectorService
from backend.app.services.delivery_slots import DeliverySlotService, check_slot_definition
from backend.app.services.capacity import Admission, CapacityLedger
from backend.app.services.couriers import CourierService
from backend.app.services.order_source import OrderSource
from backend.app.services.assignments import AssignmentEngine, AssignmentResult
from backend.app.services.fulfillment import FulfillmentService
from backend.app.services.fulfillment_states import (
    DeliveryStatus,
    PickupStatus,
    SlotStatus,
    VendorPickupStatus,
    derive_slot_status,
    derive_vendor_status,
)
from backend.app.services.dashboard import DashboardProjector
from backend.app.services.cache import CacheService

__all__ = [
    # Catalog
    "SectorService",
    "DeliverySlotService",
    "check_slot_definition",
    # Capacity
    "Admission",
    "CapacityLedger",
    # Couriers and orders
    "CourierService",
    "OrderSource",
    # Assignment
    "AssignmentEngine",
    "AssignmentResult",
    # Fulfillment
    "FulfillmentService",
    "DeliveryStatus",
    "PickupStatus",
    "SlotStatus",
    "VendorPickupStatus",
    "derive_slot_status",
    "derive_vendor_status",
    # Read side
    "DashboardProjector",
    # Cache service
    "CacheService",
]
