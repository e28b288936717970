from flask import Blueprint, g, jsonify

from fleetorg.extensions import limiter
from fleetorg.routes._helpers import json_body, read_limit, write_limit
from fleetorg.security.org_context import require_org
from fleetorg.services import vehicle_service

cars_bp = Blueprint("cars", __name__, url_prefix="/api/cars")


@cars_bp.route("", methods=["GET"])
@limiter.limit(read_limit)
@require_org
def list_cars():
    vehicles = vehicle_service.list_vehicles(g.identity, g.membership.org_id)
    return jsonify({"cars": [vehicle.to_dict() for vehicle in vehicles]})


@cars_bp.route("", methods=["POST"])
@limiter.limit(write_limit)
@require_org
def create_car():
    vehicle = vehicle_service.add_vehicle(g.identity, json_body(), g.membership.org_id)
    return jsonify({"car": vehicle.to_dict()}), 201


@cars_bp.route("/<vehicle_id>", methods=["GET"])
@limiter.limit(read_limit)
@require_org
def get_car(vehicle_id):
    vehicle = vehicle_service.get_vehicle(g.identity, vehicle_id, g.membership.org_id)
    return jsonify({"car": vehicle.to_dict()})


@cars_bp.route("/<vehicle_id>", methods=["DELETE"])
@limiter.limit(write_limit)
@require_org
def delete_car(vehicle_id):
    vehicle_service.delete_vehicle(g.identity, vehicle_id, g.membership.org_id)
    return jsonify({"message": "Car deleted successfully"})
