"""
Request rate limiting for the session API.

Counters live in process memory: the broker runs a single worker because
the session registry does. Write routes (create, stop) use ``admin_limit``.
"""

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from deskbroker.api.responses import api_error
from deskbroker.config.loader import BrokerConfig

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)

# Replaced from broker.yml by init_limiter; routes read it through a lambda
admin_limit = "30/minute"


def init_limiter(app: Flask) -> None:
    """Bind the limiter to ``app`` using the security.rate_limiting settings."""
    global admin_limit

    rl_config = BrokerConfig.settings().security.rate_limiting

    if not rl_config.enabled:
        app.config["RATELIMIT_ENABLED"] = False

    admin_limit = rl_config.admin_limit
    app.config.setdefault("RATELIMIT_DEFAULT", rl_config.default_limit)

    limiter.init_app(app)

    @app.errorhandler(429)
    def rate_limit_handler(e):
        return api_error("Rate limit exceeded. Try again later.", 429)
