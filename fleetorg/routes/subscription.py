from datetime import datetime

from flask import Blueprint, g, jsonify

from fleetorg.errors import ValidationError
from fleetorg.extensions import limiter
from fleetorg.routes._helpers import json_body, read_limit, write_limit
from fleetorg.security.org_context import require_org
from fleetorg.services import plan_lifecycle

subscription_bp = Blueprint("subscription", __name__, url_prefix="/api/subscription")


def _parse_timestamp(value, field):
    if value in (None, ""):
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 timestamp")


@subscription_bp.route("", methods=["GET"])
@limiter.limit(read_limit)
@require_org
def get_subscription():
    return jsonify(plan_lifecycle.describe_subscription(g.identity, g.membership.org_id))


@subscription_bp.route("/cancel", methods=["POST"])
@limiter.limit(write_limit)
@require_org
def cancel_subscription():
    data = json_body()
    org = plan_lifecycle.cancel(
        g.identity,
        reason=data.get("reason"),
        billing_period_end=_parse_timestamp(data.get("billing_period_end"), "billing_period_end"),
        active_org_hint=g.membership.org_id,
    )
    return jsonify({
        "success": True,
        "message": "Subscription cancelled successfully",
        "subscription_end_date": org.subscription_end_date.isoformat(),
        "scheduled_deletion_date": org.scheduled_deletion_date.isoformat(),
    })


@subscription_bp.route("/reactivate", methods=["POST"])
@limiter.limit(write_limit)
@require_org
def reactivate_subscription():
    org = plan_lifecycle.reactivate(g.identity, g.membership.org_id)
    return jsonify({
        "success": True,
        "message": "Subscription reactivated",
        "org": org.to_dict(),
    })


@subscription_bp.route("/downgrade", methods=["POST"])
@limiter.limit(write_limit)
@require_org
def downgrade_subscription():
    data = json_body()
    target_tier = data.get("targetTier")
    if not target_tier:
        raise ValidationError("targetTier is required")
    vehicles_to_delete = data.get("vehiclesToDelete")
    if vehicles_to_delete is not None and not isinstance(vehicles_to_delete, list):
        raise ValidationError("vehiclesToDelete must be a list of vehicle ids")

    result = plan_lifecycle.downgrade(
        g.identity,
        target_tier,
        vehicle_ids_to_delete=vehicles_to_delete,
        active_org_hint=g.membership.org_id,
        effective_date=_parse_timestamp(data.get("effectiveDate"), "effectiveDate"),
    )
    if result.scheduled:
        message = (
            f"Your subscription will be downgraded to {result.new_tier.value} tier "
            f"on {result.effective_date.date().isoformat()}."
        )
    else:
        message = f"Your subscription has been downgraded to {result.new_tier.value} tier."
    return jsonify({
        "success": True,
        "currentTier": result.previous_tier.value,
        "targetTier": result.new_tier.value,
        "message": message,
        **result.to_dict(),
    })
