from .organization import Organization
from .org_member import OrgMember
from .vehicle import Vehicle

__all__ = ["Organization", "OrgMember", "Vehicle"]
