import pytest

from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import OrgRole
from fleetorg.errors import Forbidden, PlanLimitExceeded, ResourceNotFound, ValidationError
from fleetorg.extensions import db
from fleetorg.models import Vehicle
from fleetorg.services.vehicle_service import (
    add_vehicle,
    count_vehicles,
    delete_vehicle,
    get_vehicle,
    list_vehicles,
)

CIVIC = {"make": "Honda", "model": "Civic", "year": "2019", "nickname": " Daily "}


def test_add_vehicle_under_limit(factory):
    org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL)

    vehicle = add_vehicle(owner, CIVIC)

    assert vehicle.org_id == org.id
    assert vehicle.user_id == owner.user_id
    assert vehicle.year == 2019
    assert vehicle.nickname == "Daily"
    assert count_vehicles(org.id) == 1


def test_add_vehicle_blocked_at_limit(factory):
    org, owner = factory.org_with_owner(plan=PlanTier.FREE, vehicles=1)

    with pytest.raises(PlanLimitExceeded) as excinfo:
        add_vehicle(owner, CIVIC)

    assert "up to 1 vehicle." in excinfo.value.message
    assert count_vehicles(org.id) == 1


def test_platform_admin_ignores_vehicle_limit(factory):
    org, _ = factory.org_with_owner(plan=PlanTier.FREE, vehicles=1)
    admin = factory.identity(admin=True)

    add_vehicle(admin, CIVIC, active_org_hint=org.id)

    assert count_vehicles(org.id) == 2


def test_viewer_cannot_add(factory):
    org, _ = factory.org_with_owner(plan=PlanTier.BUSINESS)
    viewer = factory.identity()
    factory.member(org, viewer, OrgRole.VIEWER)

    with pytest.raises(Forbidden):
        add_vehicle(viewer, CIVIC)


@pytest.mark.parametrize("data", [
    {"model": "Civic"},
    {"make": "Honda", "model": "   "},
    {"make": "Honda", "model": "Civic", "year": "next year"},
    {"make": "Honda", "model": "Civic", "current_mileage": -5},
    {"make": "H" * 101, "model": "Civic"},
])
def test_vehicle_data_is_validated(factory, data):
    _, owner = factory.org_with_owner(plan=PlanTier.BUSINESS)
    with pytest.raises(ValidationError):
        add_vehicle(owner, data)


def test_list_only_own_org(factory):
    org, owner = factory.org_with_owner(plan=PlanTier.BUSINESS, vehicles=3)
    factory.org_with_owner(vehicles=1)

    vehicles = list_vehicles(owner)

    assert len(vehicles) == 3
    assert {v.org_id for v in vehicles} == {org.id}


def test_get_vehicle_from_other_org_is_not_found(factory):
    other_org, _ = factory.org_with_owner(vehicles=1)
    _, owner = factory.org_with_owner()
    foreign = Vehicle.query.filter_by(org_id=other_org.id).one()

    with pytest.raises(ResourceNotFound):
        get_vehicle(owner, foreign.id)


def test_viewer_reads_but_cannot_delete(factory, count):
    org, _ = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=1)
    viewer = factory.identity()
    factory.member(org, viewer, OrgRole.VIEWER)
    vehicle = Vehicle.query.filter_by(org_id=org.id).one()

    assert get_vehicle(viewer, vehicle.id).id == vehicle.id
    with pytest.raises(Forbidden):
        delete_vehicle(viewer, vehicle.id)
    assert count(Vehicle, org_id=org.id) == 1


def test_editor_deletes_vehicle(factory, count):
    org, _ = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=2)
    editor = factory.identity()
    factory.member(org, editor, OrgRole.EDITOR)
    vehicle = Vehicle.query.filter_by(org_id=org.id).first()

    delete_vehicle(editor, vehicle.id)

    assert count(Vehicle, org_id=org.id) == 1


def test_scheduled_downgrade_caps_new_vehicles(factory):
    org, owner = factory.org_with_owner(plan=PlanTier.PERSONAL, vehicles=1)
    org.pending_downgrade_tier = PlanTier.FREE.value
    org.downgrade_effective_date = org.created_at
    db.session.commit()

    with pytest.raises(PlanLimitExceeded) as excinfo:
        add_vehicle(owner, CIVIC)

    assert excinfo.value.payload["maxVehicles"] == 1
    assert count_vehicles(org.id) == 1
