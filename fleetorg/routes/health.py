import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fleetorg.extensions import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__)


def check_database():
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "ok", "message": "Database connection successful"}
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Database health check failed: {e}")
        return {"status": "error", "message": "Database connection failed"}


@health_bp.route("/health", methods=["GET"])
def health():
    """Liveness check that also pings the database."""
    database = check_database()
    ok = database["status"] == "ok"
    return jsonify({
        "status": "ok" if ok else "degraded",
        "api": "ok",
        "database": database,
    }), 200 if ok else 503
