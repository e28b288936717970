"""
Self-healing for users who end up without an organization membership.

Two strategies, in order:

1. Reconnect the user to the org that already owns their legacy vehicles.
2. Provision a fresh org and make the user its owner.

Provisioning is two commits (org, then membership). A failed membership
insert is compensated by deleting the org; if that delete fails too the org
is orphaned and ``IntegrityRisk`` is raised. Unique constraints on
``org_members(org_id, user_id)`` and ``organizations.provisioned_for_user_id``
make concurrent calls for the same user converge on one org and one
membership.
"""

import logging
import re
import uuid
from dataclasses import replace
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import Identity, Membership, OrgRole
from fleetorg.errors import IntegrityRisk, StoreUnavailable
from fleetorg.extensions import db
from fleetorg.models import Organization, OrgMember, Vehicle
from fleetorg.services.membership_service import (
    find_stored_membership,
    resolve_membership,
    to_membership,
)
from fleetorg.utils.clock import utcnow

logger = logging.getLogger(__name__)

DEFAULT_ORG_NAME = "My Organization"


def derive_org_name(identity: Identity) -> str:
    display_name = (identity.display_name or "").strip()
    if display_name:
        return f"{display_name}'s Organization"
    local_part = (identity.email or "").split("@", 1)[0].strip()
    if local_part:
        return f"{local_part}'s Organization"
    return DEFAULT_ORG_NAME


def generate_slug(name: str) -> str:
    """URL-friendly slug with a random suffix so it stays unique."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:50] or "org"
    return f"{slug}-{uuid.uuid4().hex[:8]}"


def ensure_user_has_org(identity: Identity) -> Membership:
    """
    Give ``identity`` an owner membership, reconnecting before provisioning.

    Raises:
        StoreUnavailable: If the store fails; nothing is left half-written
        IntegrityRisk: If a compensating delete failed and left an orphaned org
    """
    logger.info("Self-healing organization membership", extra={"user_id": identity.user_id})

    membership = _reconnect(identity)
    if membership is not None:
        return membership
    return _provision(identity)


def resolve_or_heal(identity: Identity, active_org_hint: Optional[str] = None) -> Membership:
    """Resolve the membership, self-healing once when there is none."""
    membership = resolve_membership(identity, active_org_hint)
    if membership is None:
        return ensure_user_has_org(identity)
    if membership.synthetic and membership.org_id is None:
        # Platform admin without an active org: anchor to their own org
        anchored = find_stored_membership(identity.user_id) or ensure_user_has_org(identity)
        return replace(membership, org_id=anchored.org_id)
    return membership


def _reconnect(identity: Identity) -> Optional[Membership]:
    try:
        legacy_org_id = (
            db.session.query(Vehicle.org_id)
            .filter(Vehicle.user_id == identity.user_id, Vehicle.org_id.isnot(None))
            .order_by(Vehicle.created_at.asc(), Vehicle.id.asc())
            .limit(1)
            .scalar()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Legacy vehicle lookup failed", extra={"user_id": identity.user_id, "error": str(exc)})
        raise StoreUnavailable("Legacy vehicle lookup failed") from exc

    if legacy_org_id is None:
        return None

    logger.info("Reconnecting user to legacy organization", extra={"user_id": identity.user_id, "org_id": legacy_org_id})
    return _link_owner(identity, legacy_org_id)


def _link_owner(identity: Identity, org_id: str) -> Membership:
    """Insert an owner membership, re-reading the existing row on conflict."""
    member = OrgMember(
        org_id=org_id,
        user_id=identity.user_id,
        role=OrgRole.OWNER.value,
        accepted_at=utcnow(),
    )
    db.session.add(member)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("Membership created concurrently, re-reading", extra={"user_id": identity.user_id, "org_id": org_id})
        existing = find_stored_membership(identity.user_id, org_id)
        if existing is None:
            raise StoreUnavailable("Membership could not be created")
        return existing
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Membership insert failed", extra={"user_id": identity.user_id, "org_id": org_id, "error": str(exc)})
        raise StoreUnavailable("Membership insert failed") from exc

    return to_membership(member, db.session.get(Organization, org_id))


def _provision(identity: Identity) -> Membership:
    name = derive_org_name(identity)
    org = Organization(
        name=name,
        slug=generate_slug(name),
        provisioned_for_user_id=identity.user_id,
    )
    org.apply_plan(PlanTier.BUSINESS if identity.is_platform_admin else PlanTier.FREE)
    db.session.add(org)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("Organization provisioned concurrently, re-reading", extra={"user_id": identity.user_id})
        return _join_concurrent_provision(identity)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Organization creation failed", extra={"user_id": identity.user_id, "error": str(exc)})
        raise StoreUnavailable("Organization creation failed") from exc

    org_id = org.id
    member = OrgMember(
        org_id=org_id,
        user_id=identity.user_id,
        role=OrgRole.OWNER.value,
        accepted_at=utcnow(),
    )
    db.session.add(member)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        if isinstance(exc, IntegrityError):
            existing = find_stored_membership(identity.user_id, org_id)
            if existing is not None and existing.org_id == org_id:
                return existing
        logger.error(
            "Owner membership insert failed, removing provisioned organization",
            extra={"user_id": identity.user_id, "org_id": org_id, "error": str(exc)},
        )
        _compensate(org_id)
        raise StoreUnavailable("Organization setup failed") from exc

    logger.info("Provisioned organization", extra={"user_id": identity.user_id, "org_id": org_id, "plan": org.subscription_plan})
    return to_membership(member, org)


def _join_concurrent_provision(identity: Identity) -> Membership:
    existing = find_stored_membership(identity.user_id)
    if existing is not None:
        return existing

    # The winning call committed its org but not yet its membership
    try:
        org_id = (
            db.session.query(Organization.id)
            .filter(Organization.provisioned_for_user_id == identity.user_id)
            .scalar()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable("Organization lookup failed") from exc

    if org_id is None:
        raise StoreUnavailable("Concurrent organization setup did not complete")
    return _link_owner(identity, org_id)


def _compensate(org_id: str) -> None:
    """Delete a just-created org. Deleting an already-missing org is a no-op."""
    try:
        db.session.query(Organization).filter(Organization.id == org_id).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.critical(
            "Compensating delete failed; orphaned organization requires manual cleanup",
            extra={"org_id": org_id, "error": str(exc)},
        )
        raise IntegrityRisk("Orphaned organization left behind", org_id=org_id) from exc
    logger.warning("Removed orphaned organization", extra={"org_id": org_id})
