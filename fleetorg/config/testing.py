from .base import BaseConfig


class TestingConfig(BaseConfig):
    """
    Testing configuration: in-memory SQLite, no rate limiting.
    """

    TESTING = True

    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}

    ADMIN_USER_IDS = ["platform-admin"]

    RATELIMIT_ENABLED = False
    LOG_LEVEL = "WARNING"
