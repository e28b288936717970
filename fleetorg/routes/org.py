from flask import Blueprint, g, jsonify, request
from flask_jwt_extended import jwt_required

from fleetorg.extensions import limiter
from fleetorg.routes._helpers import json_body, read_limit, write_limit
from fleetorg.security.identity import active_org_hint, current_identity, set_active_org_cookie
from fleetorg.security.org_context import require_org
from fleetorg.services import member_service, membership_service
from fleetorg.services.org_provisioning import resolve_or_heal

org_bp = Blueprint("org", __name__, url_prefix="/api/org")


@org_bp.route("", methods=["GET"])
@limiter.limit(read_limit)
@jwt_required()
def get_org():
    """Current organization, or every organization with ``?all=true``."""
    identity = current_identity()
    if request.args.get("all") == "true":
        orgs = membership_service.list_memberships(identity)
        return jsonify({
            "orgs": [summary.to_dict() for summary in orgs],
            "active_org_id": active_org_hint(),
        })
    membership = resolve_or_heal(identity, active_org_hint())
    org = member_service.get_organization(membership)
    return jsonify({"org": org.to_dict(), "role": membership.role.value})


@org_bp.route("", methods=["PATCH"])
@limiter.limit(write_limit)
@require_org
def update_org():
    org = member_service.rename_org(g.identity, json_body().get("name"), g.membership.org_id)
    return jsonify({"org": org.to_dict()})


@org_bp.route("/switch", methods=["POST"])
@limiter.limit(write_limit)
@jwt_required()
def switch_org():
    org_id = json_body().get("org_id")
    membership = membership_service.validate_switch(current_identity(), org_id)
    response = jsonify({"message": "Switched organization", "org_id": membership.org_id, "role": membership.role.value})
    return set_active_org_cookie(response, membership.org_id)


@org_bp.route("/members", methods=["GET"])
@limiter.limit(read_limit)
@require_org
def list_members():
    members = member_service.list_members(g.identity, g.membership.org_id)
    return jsonify({"members": members})


@org_bp.route("/members", methods=["POST"])
@limiter.limit(write_limit)
@require_org
def invite_member():
    data = json_body()
    invite = member_service.invite_member(g.identity, data.get("email"), data.get("role"), g.membership.org_id)
    return jsonify({"invite": invite.to_dict()}), 201


@org_bp.route("/members", methods=["DELETE"])
@limiter.limit(write_limit)
@require_org
def remove_member():
    member_service.remove_member(g.identity, json_body().get("member_id"), g.membership.org_id)
    return jsonify({"message": "Member removed successfully"})


@org_bp.route("/members/<member_id>", methods=["PATCH"])
@limiter.limit(write_limit)
@require_org
def change_member_role(member_id):
    member = member_service.change_role(g.identity, member_id, json_body().get("role"), g.membership.org_id)
    return jsonify({"member": member.to_dict()})


@org_bp.route("/accept-invite", methods=["POST"])
@limiter.limit(write_limit)
@jwt_required()
def accept_invite():
    membership = member_service.accept_invite(current_identity(), json_body().get("invite_id"))
    response = jsonify({
        "message": "Invitation accepted successfully",
        "membership": membership.to_dict(),
    })
    return set_active_org_cookie(response, membership.org_id)


@org_bp.route("/leave", methods=["POST"])
@limiter.limit(write_limit)
@jwt_required()
def leave_org():
    next_org_id = member_service.leave_org(current_identity(), json_body().get("org_id"))
    response = jsonify({"message": "Left organization successfully", "next_org_id": next_org_id})
    if next_org_id:
        set_active_org_cookie(response, next_org_id)
    return response
