"""
Subscription lifecycle state machine for an organization.

This module is the only place that changes an organization's plan,
cancellation or downgrade fields. Every transition except applying a due
downgrade is owner-only.

    active --cancel()--> cancellation_pending --(purge job)--> deleted
    cancellation_pending --reactivate()--> active
    active --downgrade(tier)--> active on the lower tier (RequiresVehicleSelection while over its limit)
    active --downgrade(tier, effective_date)--> downgrade_pending --apply_due_downgrades()--> active on the lower tier
    downgrade_pending --cancel()--> cancellation_pending (the pending downgrade is dropped)
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from fleetorg.domain.plans import (
    ACCOUNT_DELETION_GRACE_DAYS,
    DEFAULT_BILLING_PERIOD_DAYS,
    PLAN_FEATURES,
    PlanTier,
    display_name,
    limits_for,
)
from fleetorg.domain.roles import Identity
from fleetorg.errors import (
    DomainError,
    InvalidStateTransition,
    InvalidVehicleSelection,
    RequiresVehicleSelection,
    ResourceNotFound,
    StoreUnavailable,
    ValidationError,
)
from fleetorg.extensions import db
from fleetorg.models import Organization, OrgMember, Vehicle
from fleetorg.services.membership_service import require_membership, require_owner
from fleetorg.services.vehicle_service import count_vehicles
from fleetorg.utils.clock import as_naive_utc, utcnow

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    ACTIVE = "active"
    CANCELLATION_PENDING = "cancellation_pending"
    DOWNGRADE_PENDING = "downgrade_pending"


@dataclass(frozen=True)
class DowngradeResult:
    previous_tier: PlanTier
    new_tier: PlanTier
    vehicles_deleted: int
    effective_date: Optional[datetime] = None

    @property
    def scheduled(self) -> bool:
        return self.effective_date is not None

    def to_dict(self):
        return {
            "previousTier": self.previous_tier.value,
            "newTier": self.new_tier.value,
            "vehiclesDeleted": self.vehicles_deleted,
            "effectiveDate": _iso(self.effective_date),
        }


def subscription_state(org: Organization) -> SubscriptionState:
    if org.cancellation_requested_at is not None:
        return SubscriptionState.CANCELLATION_PENDING
    if org.pending_downgrade_tier is not None:
        return SubscriptionState.DOWNGRADE_PENDING
    return SubscriptionState.ACTIVE


def _lock_org(org_id: str) -> Organization:
    org = Organization.query.filter_by(id=org_id).with_for_update().first()
    if org is None:
        raise ResourceNotFound("Organization not found")
    return org


def describe_subscription(identity: Identity, active_org_hint: Optional[str] = None) -> dict:
    """Plan, limits, lifecycle state and usage for the caller's organization."""
    membership = require_membership(identity, active_org_hint)
    try:
        org = db.session.get(Organization, membership.org_id)
        if org is None:
            raise ResourceNotFound("Organization not found")
        vehicles = count_vehicles(org.id)
        members = OrgMember.query.filter_by(org_id=org.id).count()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable("Subscription lookup failed") from exc

    return {
        "plan": org.subscription_plan,
        "planName": display_name(org.subscription_plan),
        "state": subscription_state(org).value,
        "role": membership.role.value,
        "limits": {"maxVehicles": org.max_vehicles, "maxMembers": org.max_members},
        "usage": {"vehicles": vehicles, "members": members},
        "features": sorted(PLAN_FEATURES[org.plan]),
        "subscriptionEndDate": _iso(org.subscription_end_date),
        "cancellationRequestedAt": _iso(org.cancellation_requested_at),
        "scheduledDeletionDate": _iso(org.scheduled_deletion_date),
        "pendingDowngradeTier": org.pending_downgrade_tier,
        "downgradeEffectiveDate": _iso(org.downgrade_effective_date),
    }


def cancel(
    identity: Identity,
    reason: Optional[str] = None,
    billing_period_end: Optional[datetime] = None,
    active_org_hint: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Organization:
    """
    Request cancellation at the end of the billing period.

    Plan and limits stay as they are; the org keeps its tier until
    ``subscription_end_date`` and is purged ``ACCOUNT_DELETION_GRACE_DAYS``
    after that.

    Raises:
        Forbidden: If the caller is not the owner
        InvalidStateTransition: On the free tier or when already cancelling
    """
    now = as_naive_utc(now) if now else utcnow()
    membership = require_owner(identity, active_org_hint, "cancel the subscription")

    try:
        org = _lock_org(membership.org_id)
        if org.plan is PlanTier.FREE:
            raise InvalidStateTransition("Cannot cancel free tier")
        if org.cancellation_requested_at is not None:
            raise InvalidStateTransition("Cancellation already requested")

        if billing_period_end is not None:
            end_date = as_naive_utc(billing_period_end)
        else:
            end_date = org.subscription_end_date or now + timedelta(days=DEFAULT_BILLING_PERIOD_DAYS)

        org.cancellation_requested_at = now
        org.cancellation_reason = (reason or "").strip() or None
        org.subscription_end_date = end_date
        org.scheduled_deletion_date = end_date + timedelta(days=ACCOUNT_DELETION_GRACE_DAYS)
        org.clear_pending_downgrade()
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Cancellation failed", extra={"org_id": membership.org_id, "error": str(exc)})
        raise StoreUnavailable("Failed to cancel subscription") from exc

    logger.info(
        "Subscription cancellation requested",
        extra={"org_id": org.id, "user_id": identity.user_id, "scheduled_deletion_date": _iso(org.scheduled_deletion_date)},
    )
    return org


def reactivate(identity: Identity, active_org_hint: Optional[str] = None, now: Optional[datetime] = None) -> Organization:
    """Withdraw a pending cancellation while the org has not been purged."""
    now = as_naive_utc(now) if now else utcnow()
    membership = require_owner(identity, active_org_hint, "reactivate the subscription")

    try:
        org = _lock_org(membership.org_id)
        if org.cancellation_requested_at is None:
            raise InvalidStateTransition("Subscription is not pending cancellation")
        if org.scheduled_deletion_date is not None and org.scheduled_deletion_date <= now:
            raise InvalidStateTransition("Grace period has ended")

        org.clear_cancellation()
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Reactivation failed", extra={"org_id": membership.org_id, "error": str(exc)})
        raise StoreUnavailable("Failed to reactivate subscription") from exc

    logger.info("Subscription reactivated", extra={"org_id": org.id, "user_id": identity.user_id})
    return org


def _normalize_selection(vehicle_ids_to_delete):
    """Order-preserving de-duplication of the ids to delete."""
    if vehicle_ids_to_delete is None:
        return []
    if isinstance(vehicle_ids_to_delete, (str, bytes)) or not isinstance(vehicle_ids_to_delete, Iterable):
        raise ValidationError("vehicle_ids_to_delete must be a list of vehicle ids")
    return list(dict.fromkeys(str(vid) for vid in vehicle_ids_to_delete if vid))


def downgrade(
    identity: Identity,
    target_tier,
    vehicle_ids_to_delete: Optional[Iterable[str]] = None,
    active_org_hint: Optional[str] = None,
    effective_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> DowngradeResult:
    """
    Move the organization to a lower tier.

    When the org holds more vehicles than the target tier allows, nothing is
    deleted silently: the first call fails with ``RequiresVehicleSelection``
    carrying the exact excess, and the caller resubmits with exactly that many
    vehicle ids. The selected vehicles are deleted in the same transaction as
    the plan change, with the org row locked.

    With an ``effective_date`` in the future (the end of the paid billing
    period) the selected vehicles are still removed now, but the plan and
    limits are only recorded as pending; ``apply_due_downgrades`` switches the
    tier once the date has passed.

    Raises:
        Forbidden: If the caller is not the owner
        InvalidStateTransition: If the subscription is not active or the
            target is not strictly lower
        RequiresVehicleSelection: If the selection is missing or the wrong size
        InvalidVehicleSelection: If an id is not a vehicle of this org
        StoreUnavailable: If the transaction fails; nothing is applied
    """
    now = as_naive_utc(now) if now else utcnow()
    membership = require_owner(identity, active_org_hint, "downgrade the subscription")
    try:
        target = PlanTier.parse(target_tier)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    selected = _normalize_selection(vehicle_ids_to_delete)
    effective_date = as_naive_utc(effective_date) if effective_date else None
    scheduled = effective_date is not None and effective_date > now

    try:
        org = _lock_org(membership.org_id)
        state = subscription_state(org)
        if state is SubscriptionState.CANCELLATION_PENDING:
            raise InvalidStateTransition("Subscription is pending cancellation")
        if state is SubscriptionState.DOWNGRADE_PENDING:
            raise InvalidStateTransition(f"A downgrade to {org.pending_downgrade_tier} is already scheduled")

        previous = org.plan
        if target.rank >= previous.rank:
            raise InvalidStateTransition(
                f"Already on {target.value} tier" if target is previous
                else f"Cannot downgrade from {previous.value} to {target.value}"
            )

        current_vehicles = count_vehicles(org.id)
        target_limit = limits_for(target).max_vehicles
        excess = current_vehicles - target_limit

        if excess <= 0:
            if selected:
                raise InvalidVehicleSelection("No vehicles need to be removed for this downgrade")
        else:
            if len(selected) != excess:
                raise RequiresVehicleSelection(
                    excess_vehicles=excess,
                    current_vehicles=current_vehicles,
                    target_limit=target_limit,
                    target_tier=target.value,
                )
            owned = (
                db.session.query(Vehicle.id)
                .filter(Vehicle.org_id == org.id, Vehicle.id.in_(selected))
                .count()
            )
            if owned != len(selected):
                raise InvalidVehicleSelection("Selected vehicles must belong to this organization")

        if scheduled:
            org.pending_downgrade_tier = target.value
            org.downgrade_effective_date = effective_date
            org.downgrade_requested_at = now
        else:
            org.apply_plan(target)
            org.clear_pending_downgrade()
        db.session.flush()

        deleted = 0
        if selected:
            deleted = (
                db.session.query(Vehicle)
                .filter(Vehicle.org_id == org.id, Vehicle.id.in_(selected))
                .delete(synchronize_session=False)
            )
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Downgrade failed, rolled back", extra={"org_id": membership.org_id, "error": str(exc)})
        raise StoreUnavailable("Failed to process downgrade") from exc

    logger.info(
        "Subscription downgrade scheduled" if scheduled else "Subscription downgraded",
        extra={
            "org_id": membership.org_id,
            "previous_tier": previous.value,
            "new_tier": target.value,
            "vehicles_deleted": deleted,
            "effective_date": _iso(effective_date) if scheduled else None,
        },
    )
    return DowngradeResult(
        previous_tier=previous,
        new_tier=target,
        vehicles_deleted=deleted,
        effective_date=effective_date if scheduled else None,
    )


def apply_pending_downgrade(org_id: str, now: Optional[datetime] = None) -> Optional[DowngradeResult]:
    """
    Switch one organization to its pending tier once the effective date has passed.

    Returns ``None`` when nothing is due. An org that holds more vehicles
    than the pending tier allows is left pending and logged; vehicles are
    never deleted here.
    """
    now = as_naive_utc(now) if now else utcnow()
    try:
        org = _lock_org(org_id)
        if subscription_state(org) is not SubscriptionState.DOWNGRADE_PENDING:
            db.session.rollback()
            return None
        if org.downgrade_effective_date is not None and org.downgrade_effective_date > now:
            db.session.rollback()
            return None

        previous = org.plan
        target = PlanTier.parse(org.pending_downgrade_tier)
        current_vehicles = count_vehicles(org.id)
        if current_vehicles > limits_for(target).max_vehicles:
            db.session.rollback()
            logger.warning(
                "Pending downgrade blocked by vehicle count",
                extra={"org_id": org_id, "pending_tier": target.value, "vehicles": current_vehicles},
            )
            return None

        org.apply_plan(target)
        org.clear_pending_downgrade()
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Pending downgrade failed, rolled back", extra={"org_id": org_id, "error": str(exc)})
        raise StoreUnavailable("Failed to apply pending downgrade") from exc

    logger.info(
        "Pending downgrade applied",
        extra={"org_id": org_id, "previous_tier": previous.value, "new_tier": target.value},
    )
    return DowngradeResult(previous_tier=previous, new_tier=target, vehicles_deleted=0)


def apply_due_downgrades(now: Optional[datetime] = None) -> List[DowngradeResult]:
    """Apply every pending downgrade whose effective date has passed."""
    now = as_naive_utc(now) if now else utcnow()
    try:
        due = [
            org_id for (org_id,) in db.session.query(Organization.id)
            .filter(
                Organization.pending_downgrade_tier.isnot(None),
                Organization.cancellation_requested_at.is_(None),
                Organization.downgrade_effective_date <= now,
            )
            .order_by(Organization.downgrade_effective_date.asc())
            .all()
        ]
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable("Pending downgrade lookup failed") from exc

    results = []
    for org_id in due:
        result = apply_pending_downgrade(org_id, now)
        if result is not None:
            results.append(result)
    return results


def _iso(value):
    return value.isoformat() if value else None
