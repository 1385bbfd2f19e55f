"""
Tests for the observability module (Prometheus metrics + JSON logging).
"""

import json
import logging

import pytest
from prometheus_client import REGISTRY

from conftest import FakeLauncher
from deskbroker.domain.errors import LaunchFailure
from deskbroker.domain.registry import SessionRegistry


# ---------------------------------------------------------------------------
# Metrics endpoint
# ---------------------------------------------------------------------------

class TestMetricsEndpoint:
    """Tests for the /metrics Prometheus endpoint."""

    def test_metrics_endpoint_accessible(self, app_client):
        """GET /metrics returns 200 with Prometheus text content."""
        resp = app_client.get("/metrics")
        assert resp.status_code == 200
        body = resp.data.decode()
        assert "# HELP" in body or "# TYPE" in body

    def test_metrics_no_auth_required(self, app_client):
        """GET /metrics with a wrong API key still returns 200 (not behind blueprint auth)."""
        resp = app_client.get("/metrics", headers={"X-API-Key": "wrong-key"})
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Session metrics
# ---------------------------------------------------------------------------

class TestSessionMetrics:

    def test_provisioning_histogram_exists(self):
        names = {m.name for m in REGISTRY.collect()}
        assert "broker_provisioning_duration_seconds" in names

    def test_active_sessions_gauge_tracks_registry(self, registry):
        from deskbroker.observability import ACTIVE_SESSIONS
        summary = registry.create()
        assert ACTIVE_SESSIONS._value.get() == 1.0
        registry.stop(summary.session_id)
        assert ACTIVE_SESSIONS._value.get() == 0.0

    def test_termination_reason_counted(self, registry):
        from deskbroker.observability import SESSION_TERMINATIONS
        before = SESSION_TERMINATIONS.labels(reason="stopped")._value.get()
        registry.stop(registry.create().session_id)
        assert SESSION_TERMINATIONS.labels(reason="stopped")._value.get() == before + 1

    def test_launch_failure_counted_by_role(self, settings, geometry):
        from deskbroker.observability import LAUNCH_FAILURES
        registry = SessionRegistry(settings, launcher=FakeLauncher(fail_roles={"bridge"}), geometry=geometry)
        before = LAUNCH_FAILURES.labels(role="bridge")._value.get()
        with pytest.raises(LaunchFailure):
            registry.create()
        assert LAUNCH_FAILURES.labels(role="bridge")._value.get() == before + 1

    def test_resize_result_counted(self, registry, geometry):
        from deskbroker.observability import RESIZE_TOTAL
        session_id = registry.create().session_id
        before = RESIZE_TOTAL.labels(result="failure")._value.get()
        geometry.apply.return_value = False
        registry.resize(session_id, 800, 600)
        assert RESIZE_TOTAL.labels(result="failure")._value.get() == before + 1


# ---------------------------------------------------------------------------
# JSON logging
# ---------------------------------------------------------------------------

class TestJsonLogging:

    def test_json_output(self, capsys):
        from deskbroker.observability import setup_json_logging
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_json_logging("INFO")
            logging.getLogger("desktop-broker").info("Session abc running")
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["message"] == "Session abc running"
        assert record["level"] == "INFO"
        assert record["name"] == "desktop-broker"

    def test_sensitive_data_masked(self):
        from deskbroker.observability import SensitiveDataFilter
        record = logging.LogRecord("desktop-broker", logging.INFO, __file__, 1,
                                   "connecting with api_key=abc123", None, None)
        SensitiveDataFilter().filter(record)
        assert "abc123" not in record.msg
