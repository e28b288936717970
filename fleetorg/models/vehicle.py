import uuid

from fleetorg.extensions import db
from fleetorg.utils.clock import utcnow


class Vehicle(db.Model):
    __tablename__ = "cars"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    # Legacy direct owner from before organizations existed
    user_id = db.Column(db.String(255), nullable=True, index=True)
    make = db.Column(db.String(100), nullable=False)
    model = db.Column(db.String(100), nullable=False)
    year = db.Column(db.Integer, nullable=True)
    color = db.Column(db.String(50), nullable=True)
    license_plate = db.Column(db.String(20), nullable=True)
    nickname = db.Column(db.String(100), nullable=True)
    current_mileage = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "color": self.color,
            "license_plate": self.license_plate,
            "nickname": self.nickname,
            "current_mileage": self.current_mileage,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Vehicle {self.id} org={self.org_id}>"
