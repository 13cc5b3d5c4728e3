"""
Welfare Case Workflow Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'welfare_workflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _csv_env(name: str, default: str) -> frozenset[str]:
    return frozenset(v.strip() for v in os.getenv(name, default).split(",") if v.strip())


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Rate limiter storage (Redis in production, memory for dev)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_STORAGE_URI = REDIS_URL
    TRANSITION_RATE_LIMIT = os.getenv("TRANSITION_RATE_LIMIT", "60 per minute")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workflow engine
    # Role names stored in users.role / roles.name. The DB may carry either the
    # slug or the display name for the superuser, so both are listed.
    SUPERUSER_ROLES = _csv_env("SUPERUSER_ROLES", "super_admin,Super Administrator")
    PRIVILEGED_ROLES = _csv_env("PRIVILEGED_ROLES", "admin,super_admin,Super Administrator")
    EXECUTIVE_ROLE = os.getenv("EXECUTIVE_ROLE", "Executive Management")
    DIAGNOSTICS_PREVIEW_LIMIT = int(os.getenv("DIAGNOSTICS_PREVIEW_LIMIT", "200"))


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
    SECRET_KEY = "test-secret-key-not-for-production-use-0123456789"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
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
