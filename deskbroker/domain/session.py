"""
Session lifecycle: ordered startup, live resize and idempotent teardown.

A session owns one display number, one port pair, one working directory
and up to five supervised processes. It ends on the first of: explicit
stop, application exit, display exit, or a failed startup step.
"""

from __future__ import annotations

import logging
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from deskbroker.config.models import BrokerSettings
from deskbroker.config.settings import (
    COLOR_DEPTH,
    PROCESS_ROLES,
    ROLE_APPLICATION,
    ROLE_BRIDGE,
    ROLE_DISPLAY,
    ROLE_FRAME_EXPORT,
    ROLE_WINDOW_MANAGER,
)
from deskbroker.domain.errors import BrokerError, LaunchFailure, UnexpectedExit
from deskbroker.domain.geometry import GeometryReconfigurer, is_valid_size
from deskbroker.domain.process import ProcessHandle, ProcessLauncher
from deskbroker.domain.readiness import wait_for_display, wait_for_port
from deskbroker.domain.types import Allocation, SessionState, SessionSummary
from deskbroker.domain.workdir import prepare_workdir, remove_workdir, write_wm_config

logger = logging.getLogger("desktop-broker")

TerminationListener = Callable[["Session", str], None]

# Teardown kills the most dependent processes first
TEARDOWN_ORDER = tuple(reversed(PROCESS_ROLES))


class Session:
    """One provisioned virtual desktop and the processes it owns."""

    def __init__(
        self,
        session_id: str,
        allocation: Allocation,
        settings: BrokerSettings,
        launcher: ProcessLauncher,
        geometry: GeometryReconfigurer,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        self.id = session_id
        self.allocation = allocation
        self.settings = settings
        self.launcher = launcher
        self.geometry = geometry

        if not is_valid_size(width, height):
            width, height = settings.sessions.default_width, settings.sessions.default_height
        self.width: int = width
        self.height: int = height

        root = Path(settings.sessions.workdir_root or tempfile.gettempdir())
        self.workdir = root / f"{settings.sessions.workdir_prefix}-{session_id}"
        self.created_at = datetime.now(timezone.utc)
        self.processes: dict[str, ProcessHandle] = {}
        self.state = SessionState.PROVISIONING
        self.termination_reason: str | None = None

        self._lock = threading.Lock()
        self._resize_lock = threading.Lock()
        self._listeners: list[TerminationListener] = []

    @property
    def display(self) -> str:
        return f":{self.allocation.display}"

    @property
    def bridge_port(self) -> int:
        return self.allocation.bridge_port

    @property
    def export_port(self) -> int:
        return self.allocation.export_port

    def add_termination_listener(self, listener: TerminationListener) -> None:
        """Register a callback invoked once with (session, reason) after teardown."""
        with self._lock:
            self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Run the startup sequence.

        Raises:
            LaunchFailure: If any step failed; the session is torn down first
        """
        logger.info(
            f"Starting session {self.id} on display {self.display} "
            f"(export {self.export_port}, bridge {self.bridge_port}, {self.width}x{self.height})"
        )
        try:
            try:
                prepare_workdir(self.workdir, self._profile_template())
                wm_init = write_wm_config(self.workdir)
            except OSError as e:
                raise LaunchFailure("workdir", str(self.workdir), str(e)) from e

            self._start_display()
            self._start_window_manager(wm_init)
            self._start_frame_export()
            self._start_bridge()
            self._start_application()
        except BrokerError as e:
            logger.error(f"Session {self.id} failed to start: {e}")
            self.terminate("startup-failure")
            raise

        with self._lock:
            if self.state == SessionState.PROVISIONING:
                self.state = SessionState.RUNNING
                logger.info(f"Session {self.id} running")
                return
            reason = self.termination_reason

        raise LaunchFailure(ROLE_APPLICATION, self.settings.programs.application,
                            f"session ended during startup ({reason})")

    def _profile_template(self) -> Path | None:
        template = self.settings.application.profile_template
        return Path(template).expanduser() if template else None

    def _start_display(self) -> None:
        startup = self.settings.startup
        handle = self._launch(
            ROLE_DISPLAY,
            self.settings.programs.display,
            [self.display, "-screen", "0", f"{self.width}x{self.height}x{COLOR_DEPTH}"],
        )
        handle.add_exit_callback(self._on_display_exit)

        if startup.wait_for_display and not wait_for_display(self.allocation.display, startup.display_timeout):
            raise LaunchFailure(ROLE_DISPLAY, handle.program, f"display not ready after {startup.display_timeout}s")
        self._settle(startup.display_settle_seconds)

        if not self.geometry.apply(self.allocation.display, self.width, self.height,
                                   grace=self.settings.geometry.grace_seconds):
            logger.warning(f"Initial geometry not applied for session {self.id}, keeping server default")

    def _start_window_manager(self, wm_init: Path) -> None:
        handle = self._launch(
            ROLE_WINDOW_MANAGER,
            self.settings.programs.window_manager,
            ["-display", self.display, "-rc", str(wm_init)],
            {"DISPLAY": self.display},
        )
        handle.add_exit_callback(self._on_helper_exit)
        self._settle(self.settings.startup.wm_settle_seconds)

    def _start_frame_export(self) -> None:
        args = [
            "-display", self.display,
            "-rfbport", str(self.export_port),
            "-forever",
            "-shared",
            "-nopw",
        ]
        if self.settings.sessions.view_only:
            args.append("-viewonly")
        handle = self._launch(ROLE_FRAME_EXPORT, self.settings.programs.frame_export, args)
        handle.add_exit_callback(self._on_helper_exit)

        startup = self.settings.startup
        if startup.wait_for_export and not wait_for_port("localhost", self.export_port, startup.export_timeout):
            raise LaunchFailure(ROLE_FRAME_EXPORT, handle.program,
                                f"port {self.export_port} not listening after {startup.export_timeout}s")

    def _start_bridge(self) -> None:
        handle = self._launch(
            ROLE_BRIDGE,
            self.settings.programs.bridge,
            [f"{self.settings.sessions.bridge_bind}:{self.bridge_port}", f"localhost:{self.export_port}"],
        )
        handle.add_exit_callback(self._on_helper_exit)

    def _start_application(self) -> None:
        app_cfg = self.settings.application
        args: list[str] = []
        if app_cfg.chromium_flags:
            args += [
                "--user-data-dir", str(self.workdir),
                "--start-maximized",
                "--no-sandbox",
                "--disable-gpu",
                "--disable-software-rasterizer",
                f"--window-size={self.width},{self.height}",
            ]
            if app_cfg.extensions_dir:
                extensions = Path(app_cfg.extensions_dir).expanduser()
                if extensions.is_dir():
                    args += ["--extensions-dir", str(extensions)]
        args += app_cfg.extra_args

        handle = self._launch(
            ROLE_APPLICATION,
            self.settings.programs.application,
            args,
            {
                "DISPLAY": self.display,
                # Virtual display: no GPU, force software rendering
                "LIBGL_ALWAYS_SOFTWARE": "1",
                "ELECTRON_DISABLE_GPU": "1",
            },
        )
        handle.add_exit_callback(self._on_application_exit)

    def _launch(self, role: str, program: str, args: list[str], env: dict[str, str] | None = None) -> ProcessHandle:
        """Launch a process and take ownership of it unless teardown already began."""
        with self._lock:
            if self.state != SessionState.PROVISIONING:
                raise LaunchFailure(role, program, f"session ended during startup ({self.termination_reason})")

        handle = self.launcher.launch(role, program, args, env)

        with self._lock:
            if self.state == SessionState.PROVISIONING:
                self.processes[role] = handle
                return handle
            reason = self.termination_reason

        handle.terminate(self.settings.sessions.terminate_timeout)
        raise LaunchFailure(role, program, f"session ended during startup ({reason})")

    @staticmethod
    def _settle(seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    # ------------------------------------------------------------------
    # Exit notifications (called from process watcher threads)
    # ------------------------------------------------------------------

    def _is_ending(self) -> bool:
        with self._lock:
            return self.state in (SessionState.TERMINATING, SessionState.TERMINATED)

    def _on_application_exit(self, handle: ProcessHandle, returncode: int | None) -> None:
        if self._is_ending():
            return
        logger.info(f"Application of session {self.id} exited with code {returncode}")
        self.terminate("application-exit")

    def _on_display_exit(self, handle: ProcessHandle, returncode: int | None) -> None:
        if self._is_ending():
            return
        logger.error(f"Session {self.id}: {UnexpectedExit(handle.role, returncode)}")
        self.terminate("display-exit")

    def _on_helper_exit(self, handle: ProcessHandle, returncode: int | None) -> None:
        if self._is_ending():
            return
        logger.error(f"Session {self.id}: {UnexpectedExit(handle.role, returncode)}")
        if self.settings.sessions.fail_on_helper_exit:
            self.terminate(f"{handle.role}-exit")

    # ------------------------------------------------------------------
    # Resize
    # ------------------------------------------------------------------

    def resize(self, width: object, height: object) -> bool:
        """
        Change the display geometry of a running session.

        Returns:
            True if applied (or a no-op for non-positive sizes),
            False if the session is not running or geometry failed
        """
        if not is_valid_size(width, height):
            return True

        with self._resize_lock:
            with self._lock:
                if self.state != SessionState.RUNNING:
                    logger.warning(f"Resize ignored for session {self.id} in state {self.state.value}")
                    return False
                self.state = SessionState.RESIZING
                previous = (self.width, self.height)
                self.width, self.height = width, height

            applied = self.geometry.apply(self.allocation.display, width, height)

            with self._lock:
                if not applied:
                    self.width, self.height = previous
                if self.state == SessionState.RESIZING:
                    self.state = SessionState.RUNNING
        return applied

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def terminate(self, reason: str = "stopped") -> bool:
        """
        Kill every owned process, remove the working directory and notify
        termination listeners.

        Returns:
            True for the call that performed teardown, False for later calls
        """
        with self._lock:
            if self.state in (SessionState.TERMINATING, SessionState.TERMINATED):
                return False
            self.state = SessionState.TERMINATING
            self.termination_reason = reason
            handles = [self.processes.pop(role) for role in TEARDOWN_ORDER if role in self.processes]
            handles += list(self.processes.values())
            self.processes.clear()

        logger.info(f"Tearing down session {self.id} ({reason})")
        for handle in handles:
            try:
                handle.terminate(self.settings.sessions.terminate_timeout)
            except Exception as e:
                logger.error(f"Failed to terminate {handle.role} of session {self.id}: {e}")

        remove_workdir(self.workdir)
        self.geometry.forget(self.allocation.display)

        with self._lock:
            self.state = SessionState.TERMINATED
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(self, reason)
            except Exception as e:
                logger.error(f"Termination listener failed for session {self.id}: {e}")
        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def summary(self) -> SessionSummary:
        with self._lock:
            return SessionSummary(
                session_id=self.id,
                display=self.display,
                bridge_port=self.bridge_port,
                created_at=self.created_at,
                width=self.width,
                height=self.height,
                state=self.state,
            )

    def to_dict(self) -> dict:
        return self.summary().to_dict()
