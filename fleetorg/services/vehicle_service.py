import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from fleetorg.domain.plans import UNLIMITED_VEHICLES, limits_for
from fleetorg.domain.roles import Identity
from fleetorg.errors import (
    DomainError,
    Forbidden,
    PlanLimitExceeded,
    ResourceNotFound,
    StoreUnavailable,
    ValidationError,
)
from fleetorg.extensions import db
from fleetorg.models import Organization, Vehicle
from fleetorg.services.entitlement_service import resource_access
from fleetorg.services.membership_service import require_membership

logger = logging.getLogger(__name__)

_TEXT_FIELDS = {
    "make": 100,
    "model": 100,
    "nickname": 100,
    "color": 50,
    "license_plate": 20,
}
_REQUIRED_FIELDS = ("make", "model")


def count_vehicles(org_id: str) -> int:
    return db.session.query(Vehicle).filter(Vehicle.org_id == org_id).count()


def _clean_vehicle_data(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Vehicle data must be a JSON object")

    cleaned = {}
    for field, max_length in _TEXT_FIELDS.items():
        value = data.get(field)
        if value is None:
            continue
        value = str(value).strip()
        if len(value) > max_length:
            raise ValidationError(f"{field} must be at most {max_length} characters")
        cleaned[field] = value or None

    missing = [field for field in _REQUIRED_FIELDS if not cleaned.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for field in ("year", "current_mileage"):
        value = data.get(field)
        if value in (None, ""):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a whole number")
        if number < 0:
            raise ValidationError(f"{field} must not be negative")
        cleaned[field] = number

    return cleaned


def list_vehicles(identity: Identity, active_org_hint: Optional[str] = None) -> List[Vehicle]:
    membership = require_membership(identity, active_org_hint)
    try:
        return (
            Vehicle.query
            .filter_by(org_id=membership.org_id)
            .order_by(Vehicle.created_at.asc(), Vehicle.id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable("Vehicle listing failed") from exc


def add_vehicle(identity: Identity, data: dict, active_org_hint: Optional[str] = None) -> Vehicle:
    """
    Register a vehicle in the caller's organization.

    The org row is locked while counting so two concurrent adds cannot both
    slip under the plan limit.

    Raises:
        Forbidden: If the caller is a viewer
        PlanLimitExceeded: If the org already holds ``max_vehicles`` vehicles
    """
    membership = require_membership(identity, active_org_hint)
    if not membership.can_edit:
        raise Forbidden("Viewers cannot add vehicles")
    fields = _clean_vehicle_data(data)

    try:
        org = Organization.query.filter_by(id=membership.org_id).with_for_update().first()
        if org is None:
            raise ResourceNotFound("Organization not found")

        limit = UNLIMITED_VEHICLES if identity.is_platform_admin else org.max_vehicles
        if org.pending_downgrade_tier and not identity.is_platform_admin:
            # a scheduled downgrade caps new vehicles at the pending tier
            limit = min(limit, limits_for(org.pending_downgrade_tier).max_vehicles)
        current = count_vehicles(org.id)
        if current >= limit:
            raise PlanLimitExceeded(
                f"Your plan allows up to {limit} vehicle{'' if limit == 1 else 's'}. Upgrade to add more.",
                maxVehicles=limit,
                currentVehicles=current,
            )

        vehicle = Vehicle(org_id=org.id, user_id=identity.user_id, **fields)
        db.session.add(vehicle)
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Vehicle creation failed", extra={"org_id": membership.org_id, "error": str(exc)})
        raise StoreUnavailable("Vehicle creation failed") from exc

    logger.info("Vehicle added", extra={"org_id": vehicle.org_id, "vehicle_id": vehicle.id})
    return vehicle


def get_vehicle(identity: Identity, vehicle_id: str, active_org_hint: Optional[str] = None) -> Vehicle:
    access = resource_access(identity, vehicle_id, active_org_hint)
    if not access.has_access:
        raise ResourceNotFound("Vehicle not found")
    try:
        vehicle = db.session.get(Vehicle, vehicle_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable("Vehicle lookup failed") from exc
    if vehicle is None:
        raise ResourceNotFound("Vehicle not found")
    return vehicle


def delete_vehicle(identity: Identity, vehicle_id: str, active_org_hint: Optional[str] = None) -> None:
    access = resource_access(identity, vehicle_id, active_org_hint)
    if not access.has_access:
        raise ResourceNotFound("Vehicle not found")
    if not access.can_edit:
        raise Forbidden("Viewers cannot delete vehicles")

    try:
        deleted = (
            db.session.query(Vehicle)
            .filter(Vehicle.id == vehicle_id, Vehicle.org_id == access.org_id)
            .delete(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Vehicle deletion failed", extra={"vehicle_id": vehicle_id, "error": str(exc)})
        raise StoreUnavailable("Vehicle deletion failed") from exc

    if not deleted:
        raise ResourceNotFound("Vehicle not found")
    logger.info("Vehicle deleted", extra={"org_id": access.org_id, "vehicle_id": vehicle_id})
