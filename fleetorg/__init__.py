"""
Flask application factory for the fleet organization engine.
Fails fast on configuration errors.
"""

import logging

from flask import Flask

from fleetorg.config import ConfigurationError, get_config
from fleetorg.error_handlers import register_error_handlers
from fleetorg.extensions import init_extensions
from fleetorg.logging_config import setup_logging
from fleetorg.middleware.request_id import init_request_id_middleware
from fleetorg.routes import register_blueprints

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: ``development``, ``testing`` or ``production``;
            defaults to the ``APP_ENV`` environment variable.
    """
    app = Flask(__name__)

    try:
        app.config.from_object(get_config(config_name))
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise

    setup_logging(app)
    init_request_id_middleware(app)
    init_extensions(app)
    register_error_handlers(app)
    register_blueprints(app)

    logger.info("Application created", extra={"config": config_name or "env"})
    return app


__all__ = ["create_app"]
