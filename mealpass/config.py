"""
MealPass
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'mealpass_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _optional_float(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw.strip().lower() in ("", "none", "off"):
        return None
    return float(raw)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY") or SECRET_KEY
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Actor sessions (seconds)
    SESSION_EXPIRES = int(os.getenv("SESSION_EXPIRES", str(8 * 3600)))

    # Kiosk clock; empty means the host's local time
    LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE") or None

    # Redemption rules
    DAILY_MEAL_LIMIT = int(os.getenv("DAILY_MEAL_LIMIT", "2"))
    SHIFT_TOLERANCE_MINUTES = int(os.getenv("SHIFT_TOLERANCE_MINUTES", "15"))
    MEAL_TYPE_TOLERANCE_MINUTES = int(os.getenv("MEAL_TYPE_TOLERANCE_MINUTES", "0"))

    # Retry of network-bound steps
    RETRY_MAX_RETRIES = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    RETRY_MAX_DELAY = _optional_float("RETRY_MAX_DELAY", 8.0)
    RETRY_MAX_TOTAL_DELAY = _optional_float("RETRY_MAX_TOTAL_DELAY", 15.0)

    # Background availability polling
    AVAILABILITY_REFRESH_SECONDS = int(os.getenv("AVAILABILITY_REFRESH_SECONDS", "60"))
    AVAILABILITY_MONITOR_ENABLED = os.getenv("AVAILABILITY_MONITOR_ENABLED", "false").lower() == "true"

    # Rate limiting (4-digit codes are cheap to brute force)
    VOUCHER_RATE_LIMIT = os.getenv("VOUCHER_RATE_LIMIT", "30 per minute")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    JWT_SECRET_KEY = "testing-jwt-secret-key-0123456789abcdef"
    LOCAL_TIMEZONE = None
    # No wall-clock waits in tests
    RETRY_BASE_DELAY = 0.0
    AVAILABILITY_MONITOR_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
