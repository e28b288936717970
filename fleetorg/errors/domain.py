class DomainError(Exception):
    """Base class for every error the engine reports to its callers."""

    status_code = 400
    error = "domain_error"

    def __init__(self, message=None, **payload):
        self.message = message or self.__class__.__doc__ or self.error
        self.payload = payload
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.error, "message": self.message, **self.payload}


class ValidationError(DomainError):
    """The request is malformed."""

    error = "validation_error"


class PermissionDenied(DomainError):
    """Role or ownership guard failed."""

    status_code = 403
    error = "forbidden"


Forbidden = PermissionDenied


class MembershipNotFound(DomainError):
    """No organization membership could be resolved."""

    status_code = 404
    error = "no_organization"


class ResourceNotFound(DomainError):
    """The requested record does not exist in this organization."""

    status_code = 404
    error = "not_found"


class Conflict(DomainError):
    """The write conflicts with an existing record."""

    status_code = 409
    error = "conflict"


class InvalidStateTransition(DomainError):
    """The subscription cannot move to the requested state."""

    error = "invalid_transition"


class PlanLimitExceeded(DomainError):
    """The organization's plan does not allow another record."""

    status_code = 403
    error = "plan_limit_exceeded"


class RequiresVehicleSelection(DomainError):
    """
    A downgrade would leave more vehicles than the target plan allows.

    Retryable: the caller must resubmit with exactly ``excess_vehicles`` ids.
    """

    status_code = 409
    error = "requires_vehicle_selection"

    def __init__(self, excess_vehicles, current_vehicles, target_limit, target_tier, message=None):
        self.excess_vehicles = excess_vehicles
        self.current_vehicles = current_vehicles
        self.target_limit = target_limit
        self.target_tier = target_tier
        super().__init__(
            message or (
                f"You have {current_vehicles} vehicles but {target_tier} tier allows "
                f"{target_limit}. You must select {excess_vehicles} vehicle(s) to remove."
            ),
            requiresVehicleSelection=True,
            excessVehicles=excess_vehicles,
            currentVehicles=current_vehicles,
            targetLimit=target_limit,
        )


class InvalidVehicleSelection(DomainError):
    """One or more selected vehicles do not belong to the organization."""

    error = "invalid_vehicle_selection"


class StoreUnavailable(DomainError):
    """The persistence layer failed; the operation was not applied."""

    status_code = 503
    error = "store_unavailable"

    def to_dict(self):
        return {"error": self.error, "message": "Service temporarily unavailable. Please try again."}


class IntegrityRisk(DomainError):
    """A compensating write failed and left an orphaned record behind."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message=None, org_id=None):
        self.org_id = org_id
        super().__init__(message)

    def to_dict(self):
        return {"error": self.error, "message": "Something went wrong. Please try again later."}
