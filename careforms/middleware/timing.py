"""
Request timing middleware.

Every response carries X-Request-ID (echoed from the caller when present)
and X-Request-Duration-Ms. Form submissions and draft saves are logged at
INFO, slow requests at WARNING and 5xx at ERROR; template / instance ids are
attached by the logging filter.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

# Endpoints whose every call is worth an INFO line
_HANDOFF_ENDPOINTS = frozenset({"form_instances.save_draft", "form_instances.submit_instance"})


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.blueprint == "health":
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed,
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed > SLOW_THRESHOLD_MS:
            level = logging.WARNING
        elif request.endpoint in _HANDOFF_ENDPOINTS:
            level = logging.INFO
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d", request.method, request.path, response.status_code, extra=extra)
        return response
