"""
Tests for process supervision (deskbroker.domain.process) using real children.
"""

import logging
import sys
import threading

import pytest

from deskbroker.domain.errors import LaunchFailure
from deskbroker.domain.process import SubprocessLauncher


@pytest.fixture
def real_launcher():
    return SubprocessLauncher()


def _python(code):
    return ["-c", code]


class TestSubprocessLauncher:

    def test_exit_code_reported(self, real_launcher):
        handle = real_launcher.launch("application", sys.executable, _python("import sys; sys.exit(3)"))
        assert handle.wait(timeout=10) == 3
        assert handle.returncode == 3

    def test_exit_callback_fired_once(self, real_launcher):
        fired = []
        done = threading.Event()

        def on_exit(h, code):
            fired.append(code)
            done.set()

        handle = real_launcher.launch("application", sys.executable, _python("pass"))
        handle.add_exit_callback(on_exit)
        assert done.wait(timeout=10)
        handle.wait(timeout=10)
        assert fired == [0]

    def test_callback_after_exit_fires_immediately(self, real_launcher):
        handle = real_launcher.launch("application", sys.executable, _python("pass"))
        handle.wait(timeout=10)
        fired = []
        handle.add_exit_callback(lambda h, code: fired.append(code))
        assert fired == [0]

    def test_terminate_is_idempotent(self, real_launcher):
        handle = real_launcher.launch("display", sys.executable, _python("import time; time.sleep(30)"))
        handle.terminate(timeout=5)
        handle.terminate(timeout=5)
        assert handle.wait(timeout=10) is not None
        assert handle.terminated is True

    def test_terminate_after_exit_is_noop(self, real_launcher):
        handle = real_launcher.launch("display", sys.executable, _python("pass"))
        handle.wait(timeout=10)
        handle.terminate()
        assert handle.returncode == 0

    def test_missing_program_raises_launch_failure(self, real_launcher):
        with pytest.raises(LaunchFailure) as exc_info:
            real_launcher.launch("frameExport", "/nonexistent/x11vnc-missing", [])
        assert exc_info.value.role == "frameExport"
        assert exc_info.value.program == "/nonexistent/x11vnc-missing"

    def test_env_override_is_applied(self, real_launcher):
        handle = real_launcher.launch(
            "application",
            sys.executable,
            _python("import os, sys; sys.exit(0 if os.environ.get('DISPLAY') == ':123' else 1)"),
            {"DISPLAY": ":123"},
        )
        assert handle.wait(timeout=10) == 0

    def test_output_is_logged(self, real_launcher, caplog):
        caplog.set_level(logging.DEBUG, logger="desktop-broker.process")
        handle = real_launcher.launch("bridge", sys.executable, _python("print('hello-from-child')"))
        handle.wait(timeout=10)
        # Pump threads may lag the watcher slightly
        for _ in range(50):
            if "hello-from-child" in caplog.text:
                break
            threading.Event().wait(0.1)
        assert "hello-from-child" in caplog.text
