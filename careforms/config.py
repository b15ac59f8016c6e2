"""
Care Forms Service configuration.

Selected by ``APP_ENV`` (development / testing / production):

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _database_url(default=None):
    # Hosted Postgres hands out postgres://, SQLAlchemy 2.0 only knows postgresql://
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Rate-limit storage; memory:// keeps counters per worker process
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_STORAGE_URI = REDIS_URL

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Request bodies are response sets; 2 MB holds far more than any form
    MAX_CONTENT_LENGTH = _env_int("FORMS_MAX_BODY_BYTES", 2 * 1024 * 1024)

    # Paging cap for template / instance listings
    FORMS_MAX_PAGE_SIZE = _env_int("FORMS_MAX_PAGE_SIZE", 200)

    # Per-IP limits on the two endpoints that persist user input
    FORMS_SUBMIT_RATE_LIMIT = os.getenv("FORMS_SUBMIT_RATE_LIMIT", "30/minute")
    FORMS_DRAFT_RATE_LIMIT = os.getenv("FORMS_DRAFT_RATE_LIMIT", "120/minute")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'careforms_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # explicit allow-list only
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Production requires environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
