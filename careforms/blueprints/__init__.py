"""
Care Forms Service
Blueprint registry and shared HTTP helpers.
"""

import logging

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from careforms.utils.errors import HANDLED_EXCEPTIONS, E, api_error, exception_error

logger = logging.getLogger(__name__)


def page_args(default_limit=200):
    """Read limit/offset query params.

    Query params:
        limit:  max items (default 200, capped at FORMS_MAX_PAGE_SIZE)
        offset: starting position (default 0)

    Returns:
        (limit, offset)
    """
    max_limit = current_app.config.get("FORMS_MAX_PAGE_SIZE", 200)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = min(default_limit, max_limit)
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 1), offset


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Map the service exception hierarchy onto the JSON error envelope."""

    for exc_type in HANDLED_EXCEPTIONS:
        bp.register_error_handler(exc_type, exception_error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description or error.name}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
