"""
Health check blueprint.

    GET /api/v1/health/ready   200 once the app is serving, with engine facts
    GET /api/v1/health/live    database and rate-limit storage probes; 503 if the DB is down
"""

import logging
import time

import redis
from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from careforms.engine.types import ResponseType
from careforms.models import db
from careforms.models.forms import FormTemplate

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _timed(probe):
    started = time.perf_counter()
    probe()
    return round((time.perf_counter() - started) * 1000, 1)


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "response_types": [t.value for t in ResponseType]}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}

    try:
        latency = _timed(lambda: db.session.execute(select(func.count(FormTemplate.id))).scalar_one())
        checks["database"] = {"status": "ok", "latency_ms": latency}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health probe failed: database: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}

    # Only a real Redis is probed; memory:// storage has nothing to reach
    storage = current_app.config.get("REDIS_URL", "")
    if storage.startswith(("redis://", "rediss://")):
        try:
            latency = _timed(lambda: redis.from_url(storage, socket_timeout=2).ping())
            checks["rate_limit_storage"] = {"status": "ok", "latency_ms": latency}
        except redis.RedisError as exc:
            logger.warning("Health probe failed: redis: %s", exc)
            checks["rate_limit_storage"] = {"status": "error", "detail": str(exc)}
    else:
        checks["rate_limit_storage"] = {"status": "skipped", "detail": storage or "unset"}

    healthy = checks["database"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
