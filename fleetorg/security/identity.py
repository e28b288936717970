from typing import Optional

from flask import current_app, request
from flask_jwt_extended import get_jwt, get_jwt_identity

from fleetorg.domain.roles import Identity


def current_identity() -> Identity:
    """
    Build the caller's ``Identity`` from the verified JWT.

    ``sub`` is the user id; ``email`` and ``name`` are additional claims.
    Platform admins are listed by user id in ``ADMIN_USER_IDS``.
    """
    user_id = str(get_jwt_identity())
    claims = get_jwt()
    admin_ids = current_app.config.get("ADMIN_USER_IDS", [])
    return Identity(
        user_id=user_id,
        email=claims.get("email"),
        display_name=claims.get("name"),
        is_platform_admin=user_id in admin_ids,
    )


def active_org_hint() -> Optional[str]:
    cookie_name = current_app.config["ACTIVE_ORG_COOKIE"]
    return request.cookies.get(cookie_name) or None


def set_active_org_cookie(response, org_id: str):
    response.set_cookie(
        current_app.config["ACTIVE_ORG_COOKIE"],
        org_id,
        max_age=current_app.config["ACTIVE_ORG_COOKIE_MAX_AGE"],
        path="/",
        samesite="Lax",
        httponly=False,
        secure=current_app.config.get("ACTIVE_ORG_COOKIE_SECURE", False),
    )
    return response
