"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in mealpass/__init__.py with no default
limits; this module applies granular limits per route category.

A voucher code has only 10 000 possible values, so the kiosk endpoints
are the ones worth throttling.

Usage:
    from mealpass.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LOGIN_RATE_LIMIT = "10/minute"
ADMIN_RATE_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Voucher endpoints:   VOUCHER_RATE_LIMIT (default 30 per minute)
        - Login:               10/minute
        - Extra-meal admin:    120/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    voucher_limit = app.config.get("VOUCHER_RATE_LIMIT", "30 per minute")
    bp = app.blueprints.get("voucher")
    if bp:
        limiter.limit(voucher_limit)(bp)

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(LOGIN_RATE_LIMIT, methods=["POST"])(bp)

    bp = app.blueprints.get("extra_meal")
    if bp:
        limiter.limit(ADMIN_RATE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — vouchers: %s, login: %s, extra meals: %s",
        voucher_limit, LOGIN_RATE_LIMIT, ADMIN_RATE_LIMIT,
    )
