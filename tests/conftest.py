"""
Shared pytest fixtures for the broker test suite.
"""

import os
import threading
from unittest.mock import MagicMock

import pytest

# ---------------------------------------------------------------------------
# Environment stubs – must be set BEFORE any deskbroker module is imported so
# that module-level configuration lookups see them.
# ---------------------------------------------------------------------------

os.environ.setdefault("BROKER_API_KEY", "test-api-key-secret")
os.environ.setdefault("CONFIG_PATH", "/tmp/deskbroker-tests/config")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Import deskbroker modules AFTER env vars are set
from deskbroker.config.models import BrokerSettings  # noqa: E402
from deskbroker.domain.allocator import ResourceAllocator  # noqa: E402
from deskbroker.domain.errors import LaunchFailure  # noqa: E402
from deskbroker.domain.geometry import GeometryReconfigurer  # noqa: E402
from deskbroker.domain.registry import SessionRegistry  # noqa: E402


# ---------------------------------------------------------------------------
# Fake process supervisor
# ---------------------------------------------------------------------------

class FakeHandle:
    """In-memory ProcessHandle; exit is triggered explicitly by tests."""

    _next_pid = 1000

    def __init__(self, role, program, args, env):
        FakeHandle._next_pid += 1
        self.role = role
        self.program = program
        self.args = list(args)
        self.env = dict(env or {})
        self.pid = FakeHandle._next_pid
        self.returncode = None
        self.terminate_calls = 0
        self._callbacks = []
        self._lock = threading.Lock()

    @property
    def running(self):
        return self.returncode is None

    def wait(self, timeout=None):
        return self.returncode

    def terminate(self, timeout=5.0):
        self.terminate_calls += 1
        if self.returncode is None:
            self.exit(-15)

    def add_exit_callback(self, callback):
        with self._lock:
            if self.returncode is None:
                self._callbacks.append(callback)
                return
        callback(self, self.returncode)

    def exit(self, code=0):
        """Simulate the process exiting with ``code``."""
        with self._lock:
            if self.returncode is not None:
                return
            self.returncode = code
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self, code)


class FakeLauncher:
    """ProcessLauncher recording every launch.

    Args:
        fail_roles: roles whose launch raises LaunchFailure
        exit_on_launch: role -> exit code applied right after launch
    """

    def __init__(self, fail_roles=(), exit_on_launch=None):
        self.fail_roles = set(fail_roles)
        self.exit_on_launch = dict(exit_on_launch or {})
        self.launched = []
        self._lock = threading.Lock()

    def launch(self, role, program, args, env=None):
        if role in self.fail_roles:
            raise LaunchFailure(role, program, "No such file or directory")
        handle = FakeHandle(role, program, args, env)
        with self._lock:
            self.launched.append(handle)
        if role in self.exit_on_launch:
            handle.exit(self.exit_on_launch[role])
        return handle

    @property
    def roles(self):
        return [h.role for h in self.launched]

    def last(self, role):
        """Most recently launched handle for a role."""
        for handle in reversed(self.launched):
            if handle.role == role:
                return handle
        raise KeyError(role)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def geometry():
    """GeometryReconfigurer mock that always succeeds."""
    mock_geometry = MagicMock(spec=GeometryReconfigurer)
    mock_geometry.apply.return_value = True
    return mock_geometry


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """BrokerSettings with no startup delays and a temp working directory root."""
    return BrokerSettings(
        startup={
            "display_settle_seconds": 0,
            "wm_settle_seconds": 0,
            "wait_for_display": False,
            "wait_for_export": False,
        },
        geometry={"grace_seconds": 0},
        sessions={"workdir_root": str(tmp_path / "sessions"), "terminate_timeout": 1},
    )


@pytest.fixture
def allocator(settings):
    return ResourceAllocator.from_settings(settings.allocator)


@pytest.fixture
def registry(settings, allocator, launcher, geometry):
    return SessionRegistry(settings, allocator=allocator, launcher=launcher, geometry=geometry)


# ---------------------------------------------------------------------------
# Flask test client
# ---------------------------------------------------------------------------

@pytest.fixture
def app_client(registry):
    """Create a Flask test_client backed by a registry with fake processes."""
    from deskbroker.app import app
    from deskbroker.api.rate_limit import limiter
    from deskbroker.container import ServiceContainer

    services = ServiceContainer()
    services._registry = registry

    app.config["TESTING"] = True
    # Disable rate limiting for most tests
    app.config["RATELIMIT_ENABLED"] = False
    limiter.enabled = False
    app.extensions["services"] = services

    client = app.test_client()
    # Wrap client to add default API key header
    _original_open = client.open

    def _open_with_key(*args, **kwargs):
        headers = kwargs.pop("headers", {})
        if isinstance(headers, dict) and "X-API-Key" not in headers and "Authorization" not in headers:
            headers["X-API-Key"] = "test-api-key-secret"
        kwargs["headers"] = headers
        return _original_open(*args, **kwargs)

    client.open = _open_with_key
    yield client
    registry.stop_all("test-teardown")
