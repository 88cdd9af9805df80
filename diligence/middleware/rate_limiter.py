"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in diligence/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from diligence.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

MUTATING_BLUEPRINTS = ("deal", "task", "template", "taxonomy")
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Mutating blueprints: MUTATION_RATE_LIMIT (default 60/minute)
        - Users:               200/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("MUTATION_RATE_LIMIT", "60/minute")
    for bp_name in MUTATING_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    bp = app.blueprints.get("user")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: write=%s, users=%s", write_limit, READ_LIMIT)
