import uuid

from fleetorg.extensions import db
from fleetorg.utils.clock import utcnow


class OrgMember(db.Model):
    __tablename__ = "org_members"
    __table_args__ = (
        db.UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),
        db.UniqueConstraint("org_id", "invited_email", name="uq_org_members_org_email"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    # NULL while the invite is pending
    user_id = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(20), nullable=False)
    invited_email = db.Column(db.String(255), nullable=True)
    invited_at = db.Column(db.DateTime, nullable=True)
    accepted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def is_active(self):
        return self.user_id is not None

    @property
    def is_pending(self):
        return self.user_id is None

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "role": self.role,
            "invited_email": self.invited_email,
            "invited_at": self.invited_at.isoformat() if self.invited_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "status": "active" if self.is_active else "pending",
        }

    def __repr__(self):
        return f"<OrgMember org={self.org_id} user={self.user_id} role={self.role}>"
