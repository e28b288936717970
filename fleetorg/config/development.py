from .base import BaseConfig


class DevelopmentConfig(BaseConfig):
    """
    Development configuration.
    """

    DEBUG = True

    SECRET_KEY = "dev-secret-key"
    JWT_SECRET_KEY = "dev-jwt-secret"

    CREATE_TABLES_ON_START = True
    LOG_REQUESTS = True
