# fleetorg/routes/__init__.py
import logging

from fleetorg.routes.cars import cars_bp
from fleetorg.routes.health import health_bp
from fleetorg.routes.org import org_bp
from fleetorg.routes.subscription import subscription_bp

logger = logging.getLogger(__name__)


def register_blueprints(app):
    """Register all API blueprints"""
    for blueprint in (health_bp, org_bp, subscription_bp, cars_bp):
        app.register_blueprint(blueprint)
    logger.info("Registered API blueprints")
