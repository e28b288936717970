"""
Organization roles and the immutable value objects passed between services.

An ``Identity`` comes from the authentication layer; a ``Membership`` is the
resolved (user, organization, role) triple a request acts under.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from fleetorg.domain.plans import PlanTier


class OrgRole(str, Enum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def can_edit(self) -> bool:
        return self in (OrgRole.OWNER, OrgRole.EDITOR)

    @property
    def is_owner(self) -> bool:
        return self is OrgRole.OWNER

    @classmethod
    def assignable(cls) -> tuple:
        """Roles an owner may hand out through invites and role changes."""
        return (cls.EDITOR, cls.VIEWER)

    @classmethod
    def from_string(cls, role_str: str) -> "OrgRole":
        try:
            return cls(str(role_str).strip().lower())
        except ValueError as exc:
            valid_roles = ", ".join(role.value for role in cls)
            raise ValueError(
                f"Invalid role '{role_str}'. Valid roles are: {valid_roles}"
            ) from exc


@dataclass(frozen=True)
class Identity:
    """
    Authenticated caller.

    Attributes:
        user_id: Stable id from the authentication provider
        email: Primary email, used for invites and org naming
        display_name: Profile name, may be empty
        is_platform_admin: Operator escape hatch that bypasses every org check
    """

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_platform_admin: bool = False


@dataclass(frozen=True)
class Membership:
    org_id: Optional[str]
    user_id: str
    role: OrgRole
    plan: PlanTier
    member_id: Optional[str] = None
    synthetic: bool = False

    @property
    def can_edit(self) -> bool:
        return self.role.can_edit

    @property
    def is_owner(self) -> bool:
        return self.role.is_owner


@dataclass(frozen=True)
class MembershipSummary:
    org_id: str
    role: OrgRole
    org_name: str
    plan: PlanTier
    joined_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "org_id": self.org_id,
            "role": self.role.value,
            "org_name": self.org_name,
            "plan": self.plan.value,
        }


@dataclass(frozen=True)
class ResourceAccess:
    has_access: bool = False
    can_edit: bool = False
    is_owner: bool = False
    org_id: Optional[str] = None

    @classmethod
    def denied(cls, org_id: Optional[str] = None) -> "ResourceAccess":
        return cls(org_id=org_id)
