import os
from datetime import timedelta


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


def _csv_env(name, default=""):
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")

    # Application
    APP_NAME = "Fleet Organizations"

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///fleetorg.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Store calls must be bounded; a timed-out call surfaces as StoreUnavailable
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "5")),
    }
    CREATE_TABLES_ON_START = False

    # Auth
    JWT_SECRET_KEY = os.getenv("JWT_SECRET")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=15)
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_HEADER_NAME = "Authorization"
    JWT_HEADER_TYPE = "Bearer"

    # Operators who bypass every org check (platform admins)
    ADMIN_USER_IDS = _csv_env("ADMIN_USER_IDS")

    # Active organization preference
    ACTIVE_ORG_COOKIE = "fleetorg-active-org"
    ACTIVE_ORG_COOKIE_MAX_AGE = 60 * 60 * 24 * 365
    ACTIVE_ORG_COOKIE_SECURE = False

    # CORS
    CORS_ORIGINS = _csv_env("CORS_ORIGINS", "http://localhost:3000")

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    READ_RATE_LIMIT = "120 per minute"
    WRITE_RATE_LIMIT = "30 per minute"

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_REQUESTS = False
