import pytest
from datetime import timedelta
from faker import Faker
from flask_jwt_extended import create_access_token

from fleetorg import create_app
from fleetorg.domain.plans import PlanTier
from fleetorg.domain.roles import Identity, OrgRole
from fleetorg.extensions import db
from fleetorg.models import Organization, OrgMember, Vehicle
from fleetorg.utils.clock import utcnow

# Initialize Faker for generating test data
fake = Faker()

ADMIN_USER_ID = "platform-admin"


# Test fixtures for the entire test suite

@pytest.fixture(scope="session")
def app():
    """Create application for testing backed by in-memory SQLite"""
    app = create_app("testing")
    app.config.update(
        TESTING=True,
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(hours=1),
    )

    with app.app_context():
        yield app


@pytest.fixture(autouse=True)
def database(app):
    """Fresh tables for every test"""
    db.create_all()
    yield db
    db.session.remove()
    db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


class Factory:
    """Builds identities, organizations, memberships and vehicles"""

    def identity(self, user_id=None, email=None, display_name=None, admin=False):
        return Identity(
            user_id=ADMIN_USER_ID if admin else (user_id or fake.uuid4()),
            email=email or fake.email(),
            display_name=display_name if display_name is not None else fake.name(),
            is_platform_admin=admin,
        )

    def org(self, plan=PlanTier.FREE, name=None, **fields):
        org = Organization(name=name or fake.company(), **fields)
        org.apply_plan(plan)
        db.session.add(org)
        db.session.commit()
        return org

    def member(self, org, identity=None, role=OrgRole.OWNER, created_at=None, **fields):
        member = OrgMember(
            org_id=org.id,
            user_id=identity.user_id if identity else None,
            role=OrgRole(role).value,
            accepted_at=utcnow() if identity else None,
            **fields,
        )
        if created_at is not None:
            member.created_at = created_at
        db.session.add(member)
        db.session.commit()
        return member

    def org_with_owner(self, plan=PlanTier.FREE, owner=None, vehicles=0):
        owner = owner or self.identity()
        org = self.org(plan=plan)
        self.member(org, owner, OrgRole.OWNER)
        self.vehicles(org, vehicles, user_id=owner.user_id)
        return org, owner

    def vehicles(self, org, count, user_id=None):
        created = []
        for _ in range(count):
            vehicle = Vehicle(
                org_id=org.id if org is not None else None,
                user_id=user_id,
                make=fake.random_element(["Toyota", "Honda", "Ford", "Subaru"]),
                model=fake.random_element(["Corolla", "Civic", "F-150", "Outback"]),
                year=fake.random_int(min=1995, max=2025),
            )
            db.session.add(vehicle)
            created.append(vehicle)
        db.session.commit()
        return created


@pytest.fixture()
def factory():
    return Factory()


@pytest.fixture()
def auth_headers(app):
    """Bearer headers for an identity"""

    def _headers(identity):
        token = create_access_token(
            identity=identity.user_id,
            additional_claims={"email": identity.email, "name": identity.display_name},
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def count():
    """Row count that bypasses the identity map"""

    def _count(model, **filters):
        db.session.expire_all()
        return db.session.query(model).filter_by(**filters).count()

    return _count


@pytest.fixture()
def reload():
    """Fresh copy of a row after another session changed it"""

    def _reload(model, pk):
        db.session.expire_all()
        return db.session.get(model, pk)

    return _reload
