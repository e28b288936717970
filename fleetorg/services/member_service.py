"""
Organization membership management: invites, roles, leaving and renaming.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fleetorg.domain.plans import upgrade_message
from fleetorg.domain.roles import Identity, Membership, OrgRole
from fleetorg.errors import (
    Conflict,
    DomainError,
    Forbidden,
    PlanLimitExceeded,
    ResourceNotFound,
    StoreUnavailable,
    ValidationError,
)
from fleetorg.extensions import db
from fleetorg.models import Organization, OrgMember
from fleetorg.services.membership_service import (
    list_memberships,
    require_membership,
    require_owner,
)
from fleetorg.utils.clock import utcnow

logger = logging.getLogger(__name__)

MAX_ORG_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 255


def _parse_assignable_role(role) -> OrgRole:
    try:
        parsed = OrgRole.from_string(role)
    except ValueError:
        parsed = None
    if parsed not in OrgRole.assignable():
        raise ValidationError('Role must be "editor" or "viewer"')
    return parsed


def _normalize_email(email) -> str:
    value = str(email or "").strip().lower()
    if not value:
        raise ValidationError("Email is required")
    if len(value) > MAX_EMAIL_LENGTH or "@" not in value:
        raise ValidationError("A valid email address is required")
    return value


def _member_in_org(member_id: str, org_id: str) -> OrgMember:
    member = OrgMember.query.filter_by(id=member_id, org_id=org_id).first()
    if member is None:
        raise ResourceNotFound("Member not found")
    return member


def _store_failure(message: str, exc: Exception, **context):
    db.session.rollback()
    logger.error(message, extra={**context, "error": str(exc)})
    return StoreUnavailable(message)


def get_organization(membership: Membership) -> Organization:
    try:
        org = db.session.get(Organization, membership.org_id)
    except SQLAlchemyError as exc:
        raise _store_failure("Organization lookup failed", exc, org_id=membership.org_id) from exc
    if org is None:
        raise ResourceNotFound("Organization not found")
    return org


def rename_org(identity: Identity, name, active_org_hint: Optional[str] = None) -> Organization:
    membership = require_owner(identity, active_org_hint, "update organization settings")
    name = str(name or "").strip()
    if not name:
        raise ValidationError("Organization name is required")
    if len(name) > MAX_ORG_NAME_LENGTH:
        raise ValidationError(f"Organization name must be at most {MAX_ORG_NAME_LENGTH} characters")

    org = get_organization(membership)
    try:
        org.name = name
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to update organization", exc, org_id=membership.org_id) from exc

    logger.info("Organization renamed", extra={"org_id": org.id, "user_id": identity.user_id})
    return org


def list_members(identity: Identity, active_org_hint: Optional[str] = None) -> List[dict]:
    """Accepted members and pending invites of the caller's organization."""
    membership = require_membership(identity, active_org_hint)
    try:
        members = (
            OrgMember.query
            .filter_by(org_id=membership.org_id)
            .order_by(OrgMember.created_at.asc(), OrgMember.id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise _store_failure("Member listing failed", exc, org_id=membership.org_id) from exc

    return [
        {**member.to_dict(), "is_current_user": member.user_id == identity.user_id}
        for member in members
    ]


def invite_member(identity: Identity, email, role, active_org_hint: Optional[str] = None) -> OrgMember:
    """
    Create a pending membership for ``email``.

    Accepted members and pending invites both count against ``max_members``.

    Raises:
        Forbidden: If the caller is not the owner
        PlanLimitExceeded: If the org is already at its member limit
        Conflict: If the email has already been invited
    """
    membership = require_owner(identity, active_org_hint, "invite members")
    email = _normalize_email(email)
    role = _parse_assignable_role(role)

    try:
        org = Organization.query.filter_by(id=membership.org_id).with_for_update().first()
        if org is None:
            raise ResourceNotFound("Organization not found")

        current_members = OrgMember.query.filter_by(org_id=org.id).count()
        if current_members >= org.max_members:
            raise PlanLimitExceeded(
                f"Your plan allows up to {org.max_members} members. Upgrade for more.",
                maxMembers=org.max_members,
                upgradeMessage=upgrade_message("team_collaboration"),
            )

        invite = OrgMember(
            org_id=org.id,
            role=role.value,
            invited_email=email,
            invited_at=utcnow(),
        )
        db.session.add(invite)
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict("This email has already been invited") from exc
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to create invitation", exc, org_id=membership.org_id) from exc

    logger.info("Member invited", extra={"org_id": invite.org_id, "member_id": invite.id, "role": role.value})
    return invite


def accept_invite(identity: Identity, invite_id) -> OrgMember:
    """
    Attach ``identity`` to a pending invite addressed to its email.

    Existing memberships elsewhere are kept.
    """
    if not invite_id:
        raise ValidationError("invite_id is required")

    try:
        invite = (
            OrgMember.query
            .filter(OrgMember.id == str(invite_id), OrgMember.user_id.is_(None))
            .with_for_update()
            .first()
        )
        if invite is None:
            raise ResourceNotFound("Invitation not found or already accepted")
        if (invite.invited_email or "").lower() != (identity.email or "").strip().lower():
            raise Forbidden("This invitation was sent to a different email address")

        invite.user_id = identity.user_id
        invite.accepted_at = utcnow()
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict("You are already a member of this organization") from exc
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to accept invitation", exc, user_id=identity.user_id) from exc

    logger.info("Invitation accepted", extra={"org_id": invite.org_id, "user_id": identity.user_id})
    return invite


def change_role(identity: Identity, member_id, role, active_org_hint: Optional[str] = None) -> OrgMember:
    membership = require_owner(identity, active_org_hint, "change roles")
    role = _parse_assignable_role(role)

    try:
        member = _member_in_org(member_id, membership.org_id)
        if member.user_id == identity.user_id:
            raise ValidationError("Cannot change your own role")
        member.role = role.value
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to update role", exc, org_id=membership.org_id) from exc

    logger.info("Member role changed", extra={"org_id": membership.org_id, "member_id": member.id, "role": role.value})
    return member


def remove_member(identity: Identity, member_id, active_org_hint: Optional[str] = None) -> None:
    membership = require_owner(identity, active_org_hint, "remove members")
    if not member_id:
        raise ValidationError("member_id is required")

    try:
        member = _member_in_org(member_id, membership.org_id)
        if member.user_id == identity.user_id:
            raise ValidationError("Cannot remove yourself from the organization")
        db.session.delete(member)
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to remove member", exc, org_id=membership.org_id) from exc

    logger.info("Member removed", extra={"org_id": membership.org_id, "member_id": member_id})


def leave_org(identity: Identity, org_id) -> Optional[str]:
    """
    Drop the caller's own membership in ``org_id``.

    Returns:
        The id of the organization to switch to next
    """
    if not org_id:
        raise ValidationError("org_id is required")

    memberships = list_memberships(identity)
    leaving = next((m for m in memberships if m.org_id == org_id), None)
    if leaving is None:
        raise ResourceNotFound("You are not a member of this organization")
    if leaving.role.is_owner:
        raise ValidationError(
            "Owners cannot leave their organization. Delete the org or transfer ownership first."
        )
    if len(memberships) <= 1:
        raise ValidationError("You cannot leave your only organization")

    try:
        (
            db.session.query(OrgMember)
            .filter(OrgMember.org_id == org_id, OrgMember.user_id == identity.user_id)
            .delete(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _store_failure("Failed to leave organization", exc, org_id=org_id) from exc

    remaining = [m.org_id for m in memberships if m.org_id != org_id]
    logger.info("Left organization", extra={"org_id": org_id, "user_id": identity.user_id})
    return remaining[0] if remaining else None
