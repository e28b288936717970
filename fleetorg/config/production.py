from .base import BaseConfig, ConfigurationError


class ProductionConfig(BaseConfig):
    """
    Production configuration.
    """

    DEBUG = False

    ACTIVE_ORG_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Refuse to boot without real secrets or with SQLite."""
        if not cls.SECRET_KEY or cls.SECRET_KEY == "dev-secret-key":
            raise ConfigurationError("SECRET_KEY must be set and secure in production mode")
        if not cls.JWT_SECRET_KEY:
            raise ConfigurationError("JWT_SECRET must be set in production mode")
        if "sqlite" in cls.SQLALCHEMY_DATABASE_URI.lower():
            raise ConfigurationError("SQLite is not suitable for production")
