"""
Shared constants for the fulfillment scheduler.
"""

# ---------------------------------------------------------------------------
# Slot definition limits
# ---------------------------------------------------------------------------
MIN_SLOT_ORDERS = 1
MAX_SLOT_ORDERS = 200
MAX_PICKUP_DELAY_MINUTES = 1440

# Runtime capacity raise ceiling relative to the operator-defined max_orders
CAPACITY_RAISE_FACTOR = 1.5

# ---------------------------------------------------------------------------
# Utilization policy thresholds (reported, not enforced)
# ---------------------------------------------------------------------------
NEAR_CAPACITY_THRESHOLD = 0.90
AUTO_PAUSE_THRESHOLD = 0.95

# ---------------------------------------------------------------------------
# Order source statuses (the order record is owned by an external collaborator)
# ---------------------------------------------------------------------------
ORDER_STATUS_PLACED = "placed"
ORDER_STATUS_ASSIGNED = "assigned"
ORDER_STATUS_PICKED_UP = "picked_up"
ORDER_STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_FAILED = "delivery_failed"
ORDER_STATUS_RETURNED = "returned"
ORDER_STATUS_CANCELLED = "cancelled"

# Orders in these statuses never occupy a slot
INACTIVE_ORDER_STATUSES = (ORDER_STATUS_CANCELLED,)

# ---------------------------------------------------------------------------
# Notification audiences
# ---------------------------------------------------------------------------
AUDIENCE_CUSTOMERS = "customers"
AUDIENCE_VENDORS = "vendors"
AUDIENCE_COURIERS = "couriers"
NOTIFICATION_AUDIENCES = (AUDIENCE_CUSTOMERS, AUDIENCE_VENDORS, AUDIENCE_COURIERS)
