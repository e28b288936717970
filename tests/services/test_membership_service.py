import pytest
from datetime import datetime
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import OrgRole
from fleetorg.errors import Forbidden, StoreUnavailable, ValidationError
from fleetorg.services.membership_service import (
    list_memberships,
    resolve_membership,
    validate_switch,
)


def _store_down(*args, **kwargs):
    raise OperationalError("SELECT org_members", {}, Exception("connection refused"))


def test_returns_none_without_memberships(factory):
    assert resolve_membership(factory.identity()) is None


def test_pending_invite_is_not_a_membership(factory):
    org = factory.org()
    factory.member(org, None, OrgRole.VIEWER, invited_email="someone@example.com")
    assert resolve_membership(factory.identity(email="someone@example.com")) is None


def test_hint_selects_matching_org(factory):
    user = factory.identity()
    first = factory.org()
    second = factory.org(plan=PlanTier.PERSONAL)
    factory.member(first, user, OrgRole.OWNER, created_at=datetime(2024, 1, 1))
    factory.member(second, user, OrgRole.VIEWER, created_at=datetime(2024, 2, 1))

    membership = resolve_membership(user, second.id)

    assert membership.org_id == second.id
    assert membership.role is OrgRole.VIEWER
    assert membership.plan is PlanTier.PERSONAL


def test_stale_hint_falls_back_to_earliest_membership(factory):
    user = factory.identity()
    later = factory.org()
    earlier = factory.org()
    factory.member(later, user, OrgRole.EDITOR, created_at=datetime(2024, 3, 1))
    factory.member(earlier, user, OrgRole.OWNER, created_at=datetime(2024, 1, 1))
    foreign = factory.org()

    assert resolve_membership(user).org_id == earlier.id
    assert resolve_membership(user, foreign.id).org_id == earlier.id
    assert resolve_membership(user, "no-such-org").org_id == earlier.id


def test_equal_timestamps_break_ties_by_id(factory):
    user = factory.identity()
    org_a = factory.org()
    org_b = factory.org()
    same_time = datetime(2024, 5, 5)
    factory.member(org_b, user, OrgRole.VIEWER, created_at=same_time, id="bbbbbbbb-0000-0000-0000-000000000000")
    factory.member(org_a, user, OrgRole.EDITOR, created_at=same_time, id="aaaaaaaa-0000-0000-0000-000000000000")

    assert resolve_membership(user).org_id == org_a.id


def test_platform_admin_bypasses_store(factory):
    admin = factory.identity(admin=True)

    with patch("fleetorg.services.membership_service._memberships_query", side_effect=_store_down):
        membership = resolve_membership(admin, "org-hint")

    assert membership.synthetic
    assert membership.org_id == "org-hint"
    assert membership.role is OrgRole.OWNER
    assert membership.plan is PlanTier.BUSINESS


def test_store_failure_raises_store_unavailable(factory):
    with patch("fleetorg.services.membership_service._memberships_query", side_effect=_store_down):
        with pytest.raises(StoreUnavailable):
            resolve_membership(factory.identity())


def test_list_memberships_in_creation_order(factory):
    user = factory.identity()
    second = factory.org(name="Second")
    first = factory.org(name="First")
    factory.member(second, user, OrgRole.VIEWER, created_at=datetime(2024, 6, 1))
    factory.member(first, user, OrgRole.OWNER, created_at=datetime(2024, 1, 1))

    summaries = list_memberships(user)

    assert [s.org_name for s in summaries] == ["First", "Second"]
    assert summaries[0].to_dict() == {
        "org_id": first.id,
        "role": "owner",
        "org_name": "First",
        "plan": "free",
    }


def test_validate_switch_requires_membership(factory):
    org, owner = factory.org_with_owner()
    outsider = factory.identity()

    assert validate_switch(owner, org.id).org_id == org.id
    with pytest.raises(Forbidden):
        validate_switch(outsider, org.id)
    with pytest.raises(ValidationError):
        validate_switch(owner, None)
    with pytest.raises(ValidationError):
        validate_switch(owner, "")


def test_platform_admin_may_switch_to_any_existing_org(factory):
    org, _ = factory.org_with_owner()
    admin = factory.identity(admin=True)

    assert validate_switch(admin, org.id).org_id == org.id
    with pytest.raises(Forbidden):
        validate_switch(admin, "missing-org")
