"""
Rate limiting configuration.

The Limiter instance is created in careforms/__init__.py with no default
limits; this module applies limits to the form hand-off routes, which are the
only endpoints that persist user-entered data on every call.

Usage:
    from careforms.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the form blueprints.

    Limits (per remote IP):
        - Submit:      FORMS_SUBMIT_RATE_LIMIT  (default 30/minute)
        - Draft save:  FORMS_DRAFT_RATE_LIMIT   (default 120/minute)
        - Health:      exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    submit_limit = app.config.get("FORMS_SUBMIT_RATE_LIMIT", "30/minute")
    draft_limit = app.config.get("FORMS_DRAFT_RATE_LIMIT", "120/minute")

    for endpoint, limit in (
        ("form_instances.submit_instance", submit_limit),
        ("form_instances.save_draft", draft_limit),
    ):
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit(limit)(view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured submit=%s draft=%s", submit_limit, draft_limit)
