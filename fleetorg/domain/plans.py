"""
Plan catalog.

Static mapping from plan tier to resource limits and features. Anything that
needs a limit asks this module so plan definitions change in one place.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Final


UNLIMITED_VEHICLES: Final[int] = 999
ACCOUNT_DELETION_GRACE_DAYS: Final[int] = 30
DEFAULT_BILLING_PERIOD_DAYS: Final[int] = 30


class PlanTier(str, Enum):
    FREE = "free"
    PERSONAL = "personal"
    BUSINESS = "business"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value) -> "PlanTier":
        """Accept the enum or its string value; raise ValueError otherwise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            valid = ", ".join(tier.value for tier in cls)
            raise ValueError(f"Invalid plan '{value}'. Valid plans are: {valid}") from exc


_TIER_ORDER = (PlanTier.FREE, PlanTier.PERSONAL, PlanTier.BUSINESS)


@dataclass(frozen=True)
class PlanLimits:
    max_vehicles: int
    max_members: int


PLAN_LIMITS: Final[dict] = {
    PlanTier.FREE: PlanLimits(max_vehicles=1, max_members=1),
    PlanTier.PERSONAL: PlanLimits(max_vehicles=3, max_members=3),
    # business vehicles are billed per vehicle
    PlanTier.BUSINESS: PlanLimits(max_vehicles=UNLIMITED_VEHICLES, max_members=6),
}

PLAN_DISPLAY_NAMES: Final[dict] = {
    PlanTier.FREE: "Free",
    PlanTier.PERSONAL: "Family",
    PlanTier.BUSINESS: "Business",
}

_FREE_FEATURES = frozenset({"fuel_tracking", "basic_analytics", "unlimited_history"})
_PERSONAL_FEATURES = _FREE_FEATURES | {"maintenance_tracking", "mobile_app", "receipt_upload"}
_BUSINESS_FEATURES = _PERSONAL_FEATURES | {
    "team_collaboration",
    "tax_mileage_tracking",
    "professional_reporting",
    "advanced_mobile_features",
}

PLAN_FEATURES: Final[dict] = {
    PlanTier.FREE: _FREE_FEATURES,
    PlanTier.PERSONAL: _PERSONAL_FEATURES,
    PlanTier.BUSINESS: _BUSINESS_FEATURES,
}

UPGRADE_MESSAGES: Final[dict] = {
    "maintenance_tracking": "Upgrade to Family to track maintenance for your vehicles.",
    "mobile_app": "Upgrade to Family to use the mobile app.",
    "receipt_upload": "Upgrade to Family to upload receipts.",
    "team_collaboration": "Upgrade to Business to invite your team.",
    "tax_mileage_tracking": "Upgrade to Business for tax mileage tracking.",
    "professional_reporting": "Upgrade to Business for professional reports.",
    "advanced_mobile_features": "Upgrade to Business for advanced mobile features.",
}


def limits_for(plan) -> PlanLimits:
    return PLAN_LIMITS[PlanTier.parse(plan)]


def display_name(plan) -> str:
    return PLAN_DISPLAY_NAMES[PlanTier.parse(plan)]


def has_feature(plan, feature: str) -> bool:
    return feature in PLAN_FEATURES[PlanTier.parse(plan)]


def upgrade_message(feature: str) -> str:
    return UPGRADE_MESSAGES.get(feature, "Upgrade your plan to unlock this feature.")
