"""
Care Forms Service
Flask application factory.

    from careforms import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from careforms.config import config
from careforms.middleware.logging_config import configure_logging
from careforms.middleware.rate_limiter import init_rate_limits
from careforms.middleware.timing import init_request_timing
from careforms.models import db
from careforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only, storage from RATELIMIT_STORAGE_URI
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked; instances rely on RESTRICT."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_cors(app):
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _create_tables(app):
    from careforms.models import forms  # noqa: F401  registers the form tables

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("Creating form tables failed: %s", exc)


def _register_blueprints(app):
    from careforms.blueprints.form_instances_bp import form_instances_bp
    from careforms.blueprints.form_templates_bp import form_templates_bp
    from careforms.blueprints.health_bp import health_bp

    for bp in (form_templates_bp, form_instances_bp, health_bp):
        app.register_blueprint(bp)


def _register_app_error_handlers(app):
    """Errors raised outside any blueprint (unknown URL, wrong method, ...)."""

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed on {request.path}", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.CONFLICT_BUSY, "Too many requests", status=429, details={"limit": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """Build the Flask app for ``config_name`` (development / testing / production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # Logging before anything that might log
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    _init_cors(app)
    init_request_timing(app)

    @app.before_request
    def _require_json_body():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and not request.is_json:
                abort(415, description="Content-Type must be application/json")

    _create_tables(app)
    _register_blueprints(app)
    _register_app_error_handlers(app)

    # Limits wrap view functions, so blueprints must already be registered
    init_rate_limits(app, limiter)

    app.logger.info("Care Forms Service ready env=%s", config_name)
    return app
