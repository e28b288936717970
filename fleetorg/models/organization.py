# organization.py
import uuid

from fleetorg.domain.plans import PlanTier, limits_for
from fleetorg.extensions import db
from fleetorg.utils.clock import utcnow


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=True)

    # ========== SUBSCRIPTION ==========
    subscription_plan = db.Column(db.String(20), nullable=False, default=PlanTier.FREE.value)
    max_vehicles = db.Column(db.Integer, nullable=False, default=1)
    max_members = db.Column(db.Integer, nullable=False, default=1)
    stripe_customer_id = db.Column(db.String(100), nullable=True, index=True)
    subscription_end_date = db.Column(db.DateTime, nullable=True)

    # ========== CANCELLATION ==========
    cancellation_requested_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    scheduled_deletion_date = db.Column(db.DateTime, nullable=True, index=True)

    # ========== DOWNGRADE ==========
    # pending_downgrade_tier and downgrade_effective_date are written and cleared together
    pending_downgrade_tier = db.Column(db.String(20), nullable=True)
    downgrade_effective_date = db.Column(db.DateTime, nullable=True)
    downgrade_requested_at = db.Column(db.DateTime, nullable=True)

    # Set only on orgs created implicitly for a user; unique so concurrent provisioning converges
    provisioned_for_user_id = db.Column(db.String(255), unique=True, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def plan(self) -> PlanTier:
        return PlanTier.parse(self.subscription_plan)

    def apply_plan(self, plan):
        """Switch plan and copy its catalog limits onto the row."""
        tier = PlanTier.parse(plan)
        limits = limits_for(tier)
        self.subscription_plan = tier.value
        self.max_vehicles = limits.max_vehicles
        self.max_members = limits.max_members

    def clear_pending_downgrade(self):
        self.pending_downgrade_tier = None
        self.downgrade_effective_date = None
        self.downgrade_requested_at = None

    def clear_cancellation(self):
        self.cancellation_requested_at = None
        self.cancellation_reason = None
        self.scheduled_deletion_date = None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "subscription_plan": self.subscription_plan,
            "max_vehicles": self.max_vehicles,
            "max_members": self.max_members,
            "subscription_end_date": _iso(self.subscription_end_date),
            "cancellation_requested_at": _iso(self.cancellation_requested_at),
            "scheduled_deletion_date": _iso(self.scheduled_deletion_date),
            "pending_downgrade_tier": self.pending_downgrade_tier,
            "downgrade_effective_date": _iso(self.downgrade_effective_date),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Organization {self.id} plan={self.subscription_plan}>"


def _iso(value):
    return value.isoformat() if value else None
