from functools import wraps

from flask import g
from flask_jwt_extended import verify_jwt_in_request

from fleetorg.security.identity import active_org_hint, current_identity
from fleetorg.services.org_provisioning import resolve_or_heal


def require_org(fn):
    """
    Require a valid JWT and resolve the caller's organization.

    Self-heals once when the user has no membership. The view reads
    ``g.identity`` and ``g.membership``.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        g.identity = current_identity()
        g.membership = resolve_or_heal(g.identity, active_org_hint())
        return fn(*args, **kwargs)

    return wrapper
