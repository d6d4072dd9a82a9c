"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
JOB_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints:   60/minute  (completions, overrides, projects)
        - Template endpoints:  200/minute  (mostly reads; imports are rare)
        - Scheduler triggers:   10/minute  (each run sweeps every project)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("workflow")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("workflow_templates")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("scheduler")
    if bp:
        limiter.limit(JOB_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: workflow=%s, templates=%s, scheduler=%s",
        WRITE_LIMIT, READ_LIMIT, JOB_LIMIT,
    )
