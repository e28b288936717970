"""
Authorization questions answered on top of the membership resolver.

Every check fails closed: a store failure is logged and answered with
"no access" (or a zero limit), never with a grant.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fleetorg.domain.plans import UNLIMITED_VEHICLES
from fleetorg.domain.roles import Identity, ResourceAccess
from fleetorg.errors import StoreUnavailable
from fleetorg.extensions import db
from fleetorg.models import Organization, Vehicle
from fleetorg.services.membership_service import resolve_membership

logger = logging.getLogger(__name__)


def _safe_resolve(identity: Identity, active_org_hint: Optional[str]):
    try:
        return resolve_membership(identity, active_org_hint)
    except StoreUnavailable:
        logger.error("Entitlement check failed closed", extra={"user_id": identity.user_id})
        return None


def can_edit(identity: Identity, active_org_hint: Optional[str] = None) -> bool:
    if identity.is_platform_admin:
        return True
    membership = _safe_resolve(identity, active_org_hint)
    return bool(membership and membership.can_edit)


def is_owner(identity: Identity, active_org_hint: Optional[str] = None) -> bool:
    if identity.is_platform_admin:
        return True
    membership = _safe_resolve(identity, active_org_hint)
    return bool(membership and membership.is_owner)


def resource_access(identity: Identity, vehicle_id: str, active_org_hint: Optional[str] = None) -> ResourceAccess:
    """
    Decide whether ``identity`` may touch vehicle ``vehicle_id``.

    Access requires the vehicle's org to equal the resolved membership's org.
    Without a membership ``org_id`` still reports the vehicle's owning org for
    diagnostics, never implying access.
    """
    try:
        vehicle = db.session.get(Vehicle, vehicle_id) if vehicle_id else None
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Resource lookup failed closed", extra={"vehicle_id": vehicle_id, "error": str(exc)})
        return ResourceAccess.denied()

    vehicle_org_id = vehicle.org_id if vehicle is not None else None

    if identity.is_platform_admin:
        if vehicle is None:
            return ResourceAccess.denied()
        return ResourceAccess(has_access=True, can_edit=True, is_owner=True, org_id=vehicle_org_id)

    membership = _safe_resolve(identity, active_org_hint)
    if membership is None:
        return ResourceAccess.denied(org_id=vehicle_org_id)

    if vehicle is None or vehicle_org_id != membership.org_id:
        logger.warning(
            "Cross-org resource access denied",
            extra={"user_id": identity.user_id, "vehicle_id": vehicle_id, "org_id": membership.org_id},
        )
        return ResourceAccess.denied(org_id=membership.org_id)

    return ResourceAccess(
        has_access=True,
        can_edit=membership.can_edit,
        is_owner=membership.is_owner,
        org_id=membership.org_id,
    )


def max_vehicles_for(identity: Identity, active_org_hint: Optional[str] = None) -> int:
    if identity.is_platform_admin:
        return UNLIMITED_VEHICLES
    membership = _safe_resolve(identity, active_org_hint)
    if membership is None:
        return 0
    try:
        limit = db.session.query(Organization.max_vehicles).filter(Organization.id == membership.org_id).scalar()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Vehicle limit lookup failed closed", extra={"org_id": membership.org_id, "error": str(exc)})
        return 0
    return limit or 0
