"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in it_portal/__init__.py with no default limits; this module
applies granular limits per route group.

Usage:
    from it_portal.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

APPLICATION_LIMIT = "120/minute"
BULK_DECIDE_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Application endpoints: 120/minute
        - Bulk decide:           10/minute (one call can touch 100 applications)
        - Health check:          exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("application_bp")
    if bp:
        limiter.limit(APPLICATION_LIMIT)(bp)

    bulk_view = app.view_functions.get("application_bp.bulk_decide")
    if bulk_view:
        app.view_functions["application_bp.bulk_decide"] = limiter.limit(BULK_DECIDE_LIMIT)(bulk_view)

    health = app.view_functions.get("health")
    if health:
        limiter.exempt(health)

    app.logger.info(
        "Rate limiter configured: applications: %s, bulk decide: %s",
        APPLICATION_LIMIT, BULK_DECIDE_LIMIT,
    )
