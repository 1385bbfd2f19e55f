"""
Observability module: Prometheus metrics and structured JSON logging.

- Custom session lifecycle metrics (Gauges, Counters, Histogram)
- PrometheusMetrics integration for automatic Flask instrumentation
- JSON structured logging via python-json-logger
"""

import logging
import re
import sys

from flask import Flask
from prometheus_client import Counter, Gauge, Histogram
from prometheus_flask_exporter import PrometheusMetrics

# =============================================================================
# Prometheus Custom Metrics
# =============================================================================

ACTIVE_SESSIONS = Gauge(
    "broker_active_sessions",
    "Number of desktop sessions currently registered",
)

PROVISIONING_DURATION = Histogram(
    "broker_provisioning_duration_seconds",
    "Latency of desktop session startup",
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60),
)

SESSION_TERMINATIONS = Counter(
    "broker_session_terminations_total",
    "Number of torn down sessions by reason",
    ["reason"],
)

LAUNCH_FAILURES = Counter(
    "broker_launch_failures_total",
    "Number of session startups aborted by a launch failure, by process role",
    ["role"],
)

RESIZE_TOTAL = Counter(
    "broker_resize_total",
    "Number of display resize requests by result",
    ["result"],
)

ERRORS_TOTAL = Counter(
    "broker_errors_total",
    "Total number of errors by endpoint",
    ["endpoint"],
)


# =============================================================================
# Metrics Initialization
# =============================================================================

def init_metrics(app: Flask) -> PrometheusMetrics:
    """
    Instrument every Flask route and serve the registry at /metrics.

    The session metrics above are registered on the default prometheus_client
    registry, so they appear on the same page.
    """
    from deskbroker import __version__

    metrics = PrometheusMetrics(app, path="/metrics")
    metrics.info("broker_app_info", "Desktop session broker build", version=__version__)

    # Exempt /metrics from rate limiting
    from deskbroker.api.rate_limit import limiter
    metrics_view = app.view_functions.get("prometheus_metrics")
    if metrics_view is not None:
        limiter.exempt(metrics_view)

    return metrics


# =============================================================================
# JSON Structured Logging
# =============================================================================

class SensitiveDataFilter(logging.Filter):
    """Mask credentials that end up in log messages (API keys, bearer tokens, passwords)."""

    SENSITIVE_PATTERNS = [
        (re.compile(r'(api[_-]?key["\']?\s*[:=]\s*["\']?)[^"\'}\s,]+', re.I), r'\1***'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)[^"\'}\s,]+', re.I), r'\1***'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)[^"\'}\s,]+', re.I), r'\1***'),
        (re.compile(r'(Bearer\s+)\S+'), r'\1***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            message = record.msg
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                message = pattern.sub(replacement, message)
            record.msg = message
        return True


def setup_json_logging(level: str = "INFO") -> None:
    """
    Send every log record to stderr as one JSON object per line.

    The ``audit`` logger keeps its own stdout handler (propagate=False).
    Child process output arrives on ``desktop-broker.process``.
    """
    from pythonjsonlogger.json import JsonFormatter

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter(
        fmt="%(timestamp)s %(name)s %(levelname)s %(threadName)s %(message)s",
        rename_fields={"levelname": "level", "threadName": "thread"},
        timestamp=True,
    ))
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
