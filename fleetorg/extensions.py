# fleetorg/extensions.py
"""
Flask extensions initialization module.
Handles initialization and configuration of the extensions the engine relies on.
"""

import logging

from flask import jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from jwt.exceptions import PyJWTError
from sqlalchemy import event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


def _rate_limit_key():
    """Key requests by authenticated user when possible, otherwise by address."""
    try:
        verify_jwt_in_request(optional=True)
        user_id = get_jwt_identity()
    except (JWTExtendedException, PyJWTError):
        user_id = None
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address()}"


# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
migrate = Migrate()
limiter = Limiter(key_func=_rate_limit_key)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if dbapi_connection.__class__.__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_extensions(app):
    """Initialize all Flask extensions."""

    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    migrate.init_app(app, db)
    logger.info("Flask-Migrate initialized")

    jwt.init_app(app)
    setup_jwt_callbacks()
    logger.info("JWT Manager initialized")

    init_cors(app)
    init_rate_limiter(app)

    if app.config.get("CREATE_TABLES_ON_START", False):
        create_tables(app)

    logger.info("All extensions initialized successfully")
    return app


def init_cors(app):
    """Initialize CORS for the browser client (credentials carry the active-org cookie)."""
    cors.init_app(
        app,
        origins=app.config.get("CORS_ORIGINS", []),
        methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        supports_credentials=True,
        max_age=600,
    )


def init_rate_limiter(app):
    """Initialize the per-user rate limiter."""
    limiter.init_app(app)
    logger.info(
        "Rate limiter initialized",
        extra={"storage_uri": app.config.get("RATELIMIT_STORAGE_URI", "memory://")},
    )


@limiter.request_filter
def _health_exempt():
    return request.path == "/health"


def setup_jwt_callbacks():
    """Setup JWT callbacks for token validation and error handling."""

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            "error": "token_expired",
            "message": "The token has expired. Please refresh your token.",
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            "error": "invalid_token",
            "message": "Invalid token. Please provide a valid authentication token.",
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            "error": "authorization_required",
            "message": "Authentication required. Please provide a valid token.",
        }), 401


def create_tables(app):
    """Create database tables for every registered model."""
    with app.app_context():
        # Models must be imported so their tables are registered on the metadata
        from fleetorg import models  # noqa: F401

        db.create_all()
        logger.info("Database tables created/verified")


__all__ = [
    "db", "jwt", "cors", "migrate", "limiter",
    "init_extensions", "create_tables",
]
