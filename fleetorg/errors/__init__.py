from .domain import (
    Conflict,
    DomainError,
    Forbidden,
    IntegrityRisk,
    InvalidStateTransition,
    InvalidVehicleSelection,
    MembershipNotFound,
    PermissionDenied,
    PlanLimitExceeded,
    RequiresVehicleSelection,
    ResourceNotFound,
    StoreUnavailable,
    ValidationError,
)

__all__ = [
    "Conflict",
    "DomainError",
    "Forbidden",
    "IntegrityRisk",
    "InvalidStateTransition",
    "InvalidVehicleSelection",
    "MembershipNotFound",
    "PermissionDenied",
    "PlanLimitExceeded",
    "RequiresVehicleSelection",
    "ResourceNotFound",
    "StoreUnavailable",
    "ValidationError",
]
