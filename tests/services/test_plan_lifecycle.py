import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import OrgRole
from fleetorg.errors import (
    Forbidden,
    InvalidStateTransition,
    InvalidVehicleSelection,
    MembershipNotFound,
    RequiresVehicleSelection,
    StoreUnavailable,
    ValidationError,
)
from fleetorg.extensions import db
from fleetorg.models import Organization, Vehicle
from fleetorg.services.plan_lifecycle import (
    SubscriptionState,
    apply_due_downgrades,
    apply_pending_downgrade,
    cancel,
    describe_subscription,
    downgrade,
    reactivate,
    subscription_state,
)

NOW = datetime(2025, 3, 1, 12, 0, 0)


def _vehicle_ids(org_id):
    return [v.id for v in Vehicle.query.filter_by(org_id=org_id).order_by(Vehicle.id).all()]


def _broken_commit():
    raise OperationalError("COMMIT", {}, Exception("connection lost"))


@pytest.fixture()
def business_fleet(factory):
    """Business org with six vehicles"""
    org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS, vehicles=6)
    return org, owner


class TestDowngrade:

    def test_requires_selection_with_exact_excess(self, business_fleet):
        org, owner = business_fleet

        with pytest.raises(RequiresVehicleSelection) as excinfo:
            downgrade(owner, "free")

        error = excinfo.value
        assert error.excess_vehicles == 5
        assert error.current_vehicles == 6
        assert error.target_limit == 1
        assert error.to_dict()["requiresVehicleSelection"] is True
        assert error.to_dict()["excessVehicles"] == 5

    @pytest.mark.parametrize("selected", [4, 6])
    def test_wrong_selection_size_mutates_nothing(self, business_fleet, reload, count, selected):
        org, owner = business_fleet
        ids = _vehicle_ids(org.id)
        with pytest.raises(RequiresVehicleSelection):
            downgrade(owner, PlanTier.FREE, ids[:selected])

        org = reload(Organization, org.id)
        assert org.subscription_plan == "business"
        assert org.max_members == 6
        assert count(Vehicle, org_id=org.id) == 6

    def test_exact_selection_applies_free_plan(self, business_fleet, reload, count):
        org, owner = business_fleet
        ids = _vehicle_ids(org.id)

        result = downgrade(owner, "free", ids[:5])

        org = reload(Organization, org.id)
        assert result.previous_tier is PlanTier.BUSINESS
        assert result.new_tier is PlanTier.FREE
        assert result.vehicles_deleted == 5
        assert org.subscription_plan == "free"
        assert (org.max_vehicles, org.max_members) == (1, 1)
        assert _vehicle_ids(org.id) == [ids[5]]
        assert count(Vehicle, org_id=org.id) <= org.max_vehicles

    def test_duplicate_ids_count_once(self, business_fleet, count):
        org, owner = business_fleet
        ids = _vehicle_ids(org.id)

        with pytest.raises(RequiresVehicleSelection):
            downgrade(owner, "free", ids[:4] + [ids[0]])

        assert count(Vehicle, org_id=org.id) == 6

    def test_foreign_vehicle_rejected_without_mutation(self, factory, business_fleet, reload, count):
        org, owner = business_fleet
        other_org, _ = factory.org_with_owner(vehicles=1)
        foreign_id = _vehicle_ids(other_org.id)[0]
        ids = _vehicle_ids(org.id)[:4] + [foreign_id]

        with pytest.raises(InvalidVehicleSelection):
            downgrade(owner, "free", ids)

        assert reload(Organization, org.id).subscription_plan == "business"
        assert count(Vehicle, org_id=org.id) == 6
        assert count(Vehicle, org_id=other_org.id) == 1

    def test_no_excess_applies_immediately(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS, vehicles=2)

        result = downgrade(owner, "personal")

        org = reload(Organization, org.id)
        assert result.vehicles_deleted == 0
        assert (org.subscription_plan, org.max_vehicles, org.max_members) == ("personal", 3, 3)

    def test_no_excess_with_selection_is_rejected(self, factory, count):
        org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=1)

        with pytest.raises(InvalidVehicleSelection):
            downgrade(owner, "free", _vehicle_ids(org.id))

        assert count(Vehicle, org_id=org.id) == 1

    @pytest.mark.parametrize("plan, target", [
        (PlanTier.FREE, "free"),
        (PlanTier.PERSONAL, "business"),
        (PlanTier.PERSONAL, "personal"),
    ])
    def test_target_must_be_lower(self, factory, plan, target):
        _, owner = factory.org_with_owner(plan=plan)
        with pytest.raises(InvalidStateTransition):
            downgrade(owner, target)

    def test_unknown_tier_is_validation_error(self, business_fleet):
        _, owner = business_fleet
        with pytest.raises(ValidationError):
            downgrade(owner, "platinum")

    @pytest.mark.parametrize("selection", ["abc", b"abc", 42])
    def test_selection_must_be_a_list_of_ids(self, business_fleet, count, selection):
        _, owner = business_fleet

        with pytest.raises(ValidationError):
            downgrade(owner, "free", selection)

        assert count(Vehicle) == 6

    def test_store_failure_rolls_back_everything(self, business_fleet, reload, count):
        org, owner = business_fleet
        ids = _vehicle_ids(org.id)

        with patch.object(db.session, "commit", side_effect=_broken_commit):
            with pytest.raises(StoreUnavailable):
                downgrade(owner, "free", ids[:5])

        assert reload(Organization, org.id).subscription_plan == "business"
        assert count(Vehicle, org_id=org.id) == 6


class TestOwnerGuard:

    @pytest.mark.parametrize("role", [OrgRole.EDITOR, OrgRole.VIEWER])
    @pytest.mark.parametrize("plan", list(PlanTier))
    def test_non_owner_cannot_cancel_or_downgrade(self, factory, role, plan):
        org, _ = factory.org_with_owner(plan=plan)
        member = factory.identity()
        factory.member(org, member, role)

        with pytest.raises(Forbidden):
            cancel(member, active_org_hint=org.id)
        with pytest.raises(Forbidden):
            downgrade(member, "free", active_org_hint=org.id)
        with pytest.raises(Forbidden):
            reactivate(member, active_org_hint=org.id)

    def test_without_membership(self, factory):
        with pytest.raises(MembershipNotFound):
            cancel(factory.identity())


class TestCancel:

    def test_keeps_plan_and_limits(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=3)
        period_end = NOW + timedelta(days=12)

        cancel(owner, reason="  Too expensive ", billing_period_end=period_end, now=NOW)

        org = reload(Organization, org.id)
        assert org.subscription_plan == "personal"
        assert (org.max_vehicles, org.max_members) == (3, 3)
        assert org.cancellation_requested_at == NOW
        assert org.cancellation_reason == "Too expensive"
        assert org.subscription_end_date == period_end
        assert org.scheduled_deletion_date == period_end + timedelta(days=30)
        assert subscription_state(org) is SubscriptionState.CANCELLATION_PENDING

    def test_aware_period_end_is_stored_as_utc(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)
        period_end = datetime(2025, 4, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        cancel(owner, billing_period_end=period_end, now=NOW)

        assert reload(Organization, org.id).subscription_end_date == datetime(2025, 4, 1, 12, 0)

    def test_falls_back_to_stored_end_date(self, factory, reload):
        stored_end = NOW + timedelta(days=5)
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)
        org.subscription_end_date = stored_end
        db.session.commit()

        cancel(owner, now=NOW)

        assert reload(Organization, org.id).scheduled_deletion_date == stored_end + timedelta(days=30)

    def test_defaults_to_thirty_day_period(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)

        cancel(owner, now=NOW)

        org = reload(Organization, org.id)
        assert org.subscription_end_date == NOW + timedelta(days=30)
        assert org.scheduled_deletion_date == NOW + timedelta(days=60)

    def test_free_tier_cannot_cancel(self, factory):
        _, owner = factory.org_with_owner(plan=PlanTier.FREE)
        with pytest.raises(InvalidStateTransition):
            cancel(owner, now=NOW)

    def test_cannot_cancel_twice(self, factory):
        _, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)
        cancel(owner, now=NOW)
        with pytest.raises(InvalidStateTransition):
            cancel(owner, now=NOW)

    def test_downgrade_refused_while_cancellation_pending(self, factory, reload, count):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS, vehicles=2)
        cancel(owner, billing_period_end=NOW + timedelta(days=10), now=NOW)

        with pytest.raises(InvalidStateTransition):
            downgrade(owner, "free", _vehicle_ids(org.id)[:1])

        org = reload(Organization, org.id)
        assert org.subscription_plan == "business"
        assert subscription_state(org) is SubscriptionState.CANCELLATION_PENDING
        assert count(Vehicle, org_id=org.id) == 2

    def test_cancel_drops_scheduled_downgrade(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)
        downgrade(owner, "personal", effective_date=NOW + timedelta(days=5), now=NOW)

        cancel(owner, now=NOW)

        org = reload(Organization, org.id)
        assert org.pending_downgrade_tier is None
        assert org.downgrade_effective_date is None
        assert subscription_state(org) is SubscriptionState.CANCELLATION_PENDING


class TestScheduledDowngrade:

    def test_future_effective_date_records_pending_tier(self, business_fleet, reload, count):
        org, owner = business_fleet
        ids = _vehicle_ids(org.id)
        effective = NOW + timedelta(days=14)

        result = downgrade(owner, "personal", ids[:3], effective_date=effective, now=NOW)

        org = reload(Organization, org.id)
        assert result.scheduled
        assert result.to_dict()["effectiveDate"] == effective.isoformat()
        assert org.subscription_plan == "business"
        assert org.max_vehicles == 999
        assert org.pending_downgrade_tier == "personal"
        assert org.downgrade_effective_date == effective
        assert org.downgrade_requested_at == NOW
        assert subscription_state(org) is SubscriptionState.DOWNGRADE_PENDING
        assert count(Vehicle, org_id=org.id) == 3

    def test_past_effective_date_applies_immediately(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)

        result = downgrade(owner, "free", effective_date=NOW - timedelta(days=1), now=NOW)

        org = reload(Organization, org.id)
        assert not result.scheduled
        assert org.subscription_plan == "free"
        assert org.pending_downgrade_tier is None

    def test_second_downgrade_refused_while_pending(self, factory):
        _, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)
        downgrade(owner, "personal", effective_date=NOW + timedelta(days=5), now=NOW)

        with pytest.raises(InvalidStateTransition):
            downgrade(owner, "free", now=NOW)

    def test_due_downgrade_is_applied(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS, vehicles=1)
        effective = NOW + timedelta(days=5)
        downgrade(owner, "personal", effective_date=effective, now=NOW)

        assert apply_due_downgrades(now=NOW) == []
        results = apply_due_downgrades(now=effective + timedelta(seconds=1))

        org = reload(Organization, org.id)
        assert [(r.previous_tier, r.new_tier) for r in results] == [(PlanTier.BUSINESS, PlanTier.PERSONAL)]
        assert (org.subscription_plan, org.max_vehicles, org.max_members) == ("personal", 3, 3)
        assert org.pending_downgrade_tier is None
        assert org.downgrade_requested_at is None
        assert subscription_state(org) is SubscriptionState.ACTIVE

    def test_pending_downgrade_over_limit_stays_pending(self, factory, reload, count):
        org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=1)
        effective = NOW + timedelta(days=5)
        downgrade(owner, "free", effective_date=effective, now=NOW)
        # written directly, bypassing the add-vehicle limit
        factory.vehicles(org, 1)

        assert apply_pending_downgrade(org.id, now=effective + timedelta(days=1)) is None

        org = reload(Organization, org.id)
        assert org.subscription_plan == "personal"
        assert org.pending_downgrade_tier == "free"
        assert count(Vehicle, org_id=org.id) == 2

    def test_apply_ignores_org_without_pending_downgrade(self, factory):
        org, _ = factory.org_with_owner(plan=PlanTier.PERSONAL)
        assert apply_pending_downgrade(org.id, now=NOW) is None


class TestReactivate:

    def test_clears_cancellation(self, factory, reload):
        org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)
        cancel(owner, now=NOW)

        reactivate(owner, now=NOW + timedelta(days=1))

        org = reload(Organization, org.id)
        assert org.cancellation_requested_at is None
        assert org.scheduled_deletion_date is None
        assert subscription_state(org) is SubscriptionState.ACTIVE

    def test_requires_pending_cancellation(self, factory):
        _, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)
        with pytest.raises(InvalidStateTransition):
            reactivate(owner, now=NOW)

    def test_refused_after_grace_period(self, factory):
        _, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)
        cancel(owner, billing_period_end=NOW, now=NOW)
        with pytest.raises(InvalidStateTransition):
            reactivate(owner, now=NOW + timedelta(days=31))


def test_describe_subscription_reports_usage(factory):
    org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=2)
    factory.member(org, None, OrgRole.VIEWER, invited_email="pending@example.com")

    summary = describe_subscription(owner)

    assert summary["plan"] == "personal"
    assert summary["planName"] == "Family"
    assert summary["state"] == "active"
    assert summary["limits"] == {"maxVehicles": 3, "maxMembers": 3}
    assert summary["usage"] == {"vehicles": 2, "members": 2}
    assert "maintenance_tracking" in summary["features"]
    assert "team_collaboration" not in summary["features"]
