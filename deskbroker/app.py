"""
Desktop Session Broker HTTP application.

Serves the session API (create, list, get, resize, stop) plus /health,
/metrics and /apidocs/. Sessions and their processes live inside this
process: run it with a single worker, and every session still alive is
torn down when the interpreter exits.
"""

import atexit
import logging
import os

from flask import Flask

from deskbroker.config.loader import BrokerConfig
from deskbroker.observability import setup_json_logging

# =============================================================================
# Logging
# =============================================================================

setup_json_logging(level=os.environ.get("LOG_LEVEL") or BrokerConfig.settings().logging.level)
logger = logging.getLogger("desktop-broker")

# =============================================================================
# Flask Application
# =============================================================================

app = Flask(__name__)

from deskbroker.api.rate_limit import init_limiter  # noqa: E402
from deskbroker.observability import init_metrics  # noqa: E402
from deskbroker.api.swagger import init_swagger  # noqa: E402

init_limiter(app)
init_metrics(app)
init_swagger(app)

from deskbroker.api.routes import api  # noqa: E402
from deskbroker.api.validators import ValidationError  # noqa: E402
from deskbroker.api.responses import api_error  # noqa: E402

app.register_blueprint(api)

# =============================================================================
# Services
# =============================================================================

import deskbroker.container as container_mod  # noqa: E402

container = container_mod.ServiceContainer()
app.extensions["services"] = container
container_mod._global_container = container


@atexit.register
def shutdown() -> None:
    """Stop every live session before the interpreter exits."""
    try:
        container.shutdown()
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


# =============================================================================
# Error Handlers
# =============================================================================

@app.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError) -> tuple:
    return api_error(str(e), 400)


@app.errorhandler(404)
def handle_not_found(e: Exception) -> tuple:
    return api_error("Resource not found", 404)


@app.errorhandler(500)
def handle_server_error(e: Exception) -> tuple:
    from deskbroker.observability import ERRORS_TOTAL
    ERRORS_TOTAL.labels(endpoint="app_500").inc()
    logger.error(f"Internal server error: {e}")
    return api_error("Internal server error", 500)


if __name__ == "__main__":
    logger.info(f"Broker listening on port {os.environ.get('SERVER_PORT', '3000')}")
    app.run(host="0.0.0.0", port=int(os.environ.get("SERVER_PORT", "3000")), debug=False, threaded=True)
