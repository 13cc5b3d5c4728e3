"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in welfare_workflow/__init__.py with no default limits; this
module applies granular limits per route category.

Usage:
    from welfare_workflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

CATALOG_ADMIN_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def actor_or_address():
    """Rate limit key: the authenticated user if known, else remote IP."""
    user_id = getattr(g, "current_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per actor, falling back to remote IP):
        - Case transitions: TRANSITION_RATE_LIMIT (default 60 per minute)
        - Catalog admin:    60/minute
        - Notifications:    200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    transition_limit = app.config["TRANSITION_RATE_LIMIT"]
    bp = app.blueprints.get("case_workflow")
    if bp:
        limiter.limit(transition_limit, key_func=actor_or_address)(bp)

    for bp_name in ("workflow_stages", "executive_levels"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(CATALOG_ADMIN_LIMIT, key_func=actor_or_address)(bp)

    bp = app.blueprints.get("notifications")
    if bp:
        limiter.limit(READ_LIMIT, key_func=actor_or_address)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — transitions: %s, catalog admin: %s, notifications: %s",
        transition_limit, CATALOG_ADMIN_LIMIT, READ_LIMIT,
    )
