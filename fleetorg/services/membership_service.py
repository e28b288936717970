"""
Membership resolution and the org switching directory.

Read-only: nothing in this module writes to the store. Persistence failures
surface as ``StoreUnavailable`` so callers can fail closed.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import Identity, Membership, MembershipSummary, OrgRole
from fleetorg.errors import Forbidden, MembershipNotFound, StoreUnavailable, ValidationError
from fleetorg.extensions import db
from fleetorg.models import Organization, OrgMember

logger = logging.getLogger(__name__)


def _memberships_query(user_id: str):
    """Active memberships of a user joined with their organization, oldest first."""
    return (
        db.session.query(OrgMember, Organization)
        .join(Organization, Organization.id == OrgMember.org_id)
        .filter(OrgMember.user_id == user_id)
        .order_by(OrgMember.created_at.asc(), OrgMember.id.asc())
    )


def to_membership(member: OrgMember, org: Organization) -> Membership:
    return Membership(
        org_id=org.id,
        user_id=member.user_id,
        role=OrgRole.from_string(member.role),
        plan=org.plan,
        member_id=member.id,
    )


def platform_admin_membership(identity: Identity, active_org_hint: Optional[str] = None) -> Membership:
    return Membership(
        org_id=active_org_hint,
        user_id=identity.user_id,
        role=OrgRole.OWNER,
        plan=PlanTier.BUSINESS,
        synthetic=True,
    )


def find_stored_membership(user_id: str, active_org_hint: Optional[str] = None) -> Optional[Membership]:
    """
    Look up a persisted membership for ``user_id``.

    The hinted org wins when the user belongs to it; otherwise the earliest
    membership (``created_at`` then ``id``) is returned.

    Raises:
        StoreUnavailable: If the store cannot be queried
    """
    try:
        row = None
        if active_org_hint:
            row = _memberships_query(user_id).filter(OrgMember.org_id == active_org_hint).first()
            if row is None:
                logger.debug("Stale active org hint", extra={"user_id": user_id, "org_id": active_org_hint})
        if row is None:
            row = _memberships_query(user_id).first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Membership lookup failed", extra={"user_id": user_id, "error": str(exc)})
        raise StoreUnavailable("Membership lookup failed") from exc

    if row is None:
        return None
    member, org = row
    return to_membership(member, org)


def resolve_membership(identity: Identity, active_org_hint: Optional[str] = None) -> Optional[Membership]:
    """
    Determine the organization and role ``identity`` acts under.

    Platform admins short-circuit to a synthetic owner/business membership
    without touching the store. ``None`` means the user has no membership
    anywhere, which is the trigger for self-healing.
    """
    if identity.is_platform_admin:
        return platform_admin_membership(identity, active_org_hint)
    return find_stored_membership(identity.user_id, active_org_hint)


def list_memberships(identity: Identity) -> List[MembershipSummary]:
    try:
        rows = _memberships_query(identity.user_id).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Membership listing failed", extra={"user_id": identity.user_id, "error": str(exc)})
        raise StoreUnavailable("Membership listing failed") from exc

    return [
        MembershipSummary(
            org_id=org.id,
            role=OrgRole.from_string(member.role),
            org_name=org.name,
            plan=org.plan,
            joined_at=member.created_at,
        )
        for member, org in rows
    ]


def validate_switch(identity: Identity, org_id: str) -> Membership:
    """
    Confirm the user belongs to ``org_id`` before it becomes the active org.

    Raises:
        ValidationError: If no ``org_id`` is given
        Forbidden: If the user holds no membership in ``org_id``
    """
    if not org_id:
        raise ValidationError("org_id is required")
    try:
        if identity.is_platform_admin:
            if db.session.get(Organization, org_id) is None:
                raise Forbidden("Organization not found")
            return platform_admin_membership(identity, org_id)
        row = _memberships_query(identity.user_id).filter(OrgMember.org_id == org_id).first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Switch validation failed", extra={"user_id": identity.user_id, "error": str(exc)})
        raise StoreUnavailable("Switch validation failed") from exc

    if row is None:
        logger.warning("Switch to foreign org refused", extra={"user_id": identity.user_id, "org_id": org_id})
        raise Forbidden("Not a member of this organization")
    return to_membership(*row)


def require_membership(identity: Identity, active_org_hint: Optional[str] = None) -> Membership:
    membership = resolve_membership(identity, active_org_hint)
    if membership is None or membership.org_id is None:
        raise MembershipNotFound("No organization found")
    return membership


def require_owner(identity: Identity, active_org_hint: Optional[str] = None, action: str = "manage this organization") -> Membership:
    """
    Raises:
        MembershipNotFound: If no organization can be resolved
        Forbidden: If the caller is not the organization owner
    """
    membership = require_membership(identity, active_org_hint)
    if not membership.is_owner:
        logger.warning(
            "Owner-only action refused",
            extra={"user_id": identity.user_id, "org_id": membership.org_id, "role": membership.role.value},
        )
        raise Forbidden(f"Only the organization owner can {action}")
    return membership
