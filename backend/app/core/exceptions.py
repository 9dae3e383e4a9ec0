"""
Unified exception classes for the fulfillment scheduler.

Every service raises a ServiceError subclass; routers translate them to HTTP
responses via ``ServiceError.to_detail()`` and the carried ``status_code``.
"""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    code = "service_error"

    def __init__(self, message: str, status_code: int = 400, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class ValidationError(ServiceError):
    """Malformed input. Lists every violated constraint, not just the first."""

    code = "validation_error"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors), 400, {"errors": self.errors})


class NotFoundError(ServiceError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", 404, {"entity": entity, "id": entity_id})


class ConflictError(ServiceError):
    """The operation would break an invariant given the current state."""

    code = "conflict"

    def __init__(self, message: str, **context: Any):
        super().__init__(message, 409, context)


class CapacityExceeded(ServiceError):
    code = "capacity_exceeded"

    def __init__(self, slot_id: int, service_date: str, committed: int, max_orders: int):
        super().__init__(
            f"Slot {slot_id} is full on {service_date} ({committed}/{max_orders})",
            409,
            {
                "slot_id": slot_id,
                "date": service_date,
                "committed": committed,
                "max_orders": max_orders,
            },
        )


class InvalidTransitionError(ServiceError):
    code = "invalid_transition"

    def __init__(self, machine: str, entity_id: Any, current: str, requested: str, reason: Optional[str] = None):
        message = f"{machine} {entity_id}: cannot move from '{current}' to '{requested}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            409,
            {"machine": machine, "id": entity_id, "current": current, "requested": requested},
        )


class StoreUnavailable(ServiceError):
    """Transient backing-store failure that survived the retry budget."""

    code = "store_unavailable"

    def __init__(self, message: str = "Backing store unavailable, retry later", attempts: int = 0):
        super().__init__(message, 503, {"attempts": attempts})
