import os

from .base import BaseConfig, ConfigurationError
from .development import DevelopmentConfig
from .production import ProductionConfig
from .testing import TestingConfig

CONFIGS = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config(env=None):
    """
    Resolve and return the correct configuration class
    based on the APP_ENV environment variable.

    Supported values:
    - development
    - testing
    - production
    """

    env = (env or os.getenv("APP_ENV", "development")).lower()

    try:
        config = CONFIGS[env]
    except KeyError:
        raise ConfigurationError(f"Invalid APP_ENV value: {env}") from None

    validate = getattr(config, "validate", None)
    if validate is not None:
        validate()
    return config


__all__ = [
    "BaseConfig",
    "ConfigurationError",
    "DevelopmentConfig",
    "ProductionConfig",
    "TestingConfig",
    "get_config",
]
