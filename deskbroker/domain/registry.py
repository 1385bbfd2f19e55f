"""
Process-wide table of live desktop sessions.
"""

from __future__ import annotations

import logging
import threading
import uuid

from deskbroker.config.models import BrokerSettings
from deskbroker.config.settings import ROLE_APPLICATION
from deskbroker.domain.allocator import ResourceAllocator
from deskbroker.domain.errors import LaunchFailure, SessionNotFound
from deskbroker.domain.geometry import GeometryReconfigurer
from deskbroker.domain.process import ProcessLauncher, SubprocessLauncher
from deskbroker.domain.session import Session
from deskbroker.domain.types import SessionState, SessionSummary
from deskbroker.observability import (
    ACTIVE_SESSIONS,
    LAUNCH_FAILURES,
    PROVISIONING_DURATION,
    RESIZE_TOTAL,
    SESSION_TERMINATIONS,
)

logger = logging.getLogger("desktop-broker")


class SessionRegistry:
    """
    Creates, lists, resizes and stops sessions.

    Entries are inserted only after a successful startup and removed exactly
    once, when the session reports its termination (stop request, process
    exit or startup failure).
    """

    def __init__(
        self,
        settings: BrokerSettings,
        allocator: ResourceAllocator | None = None,
        launcher: ProcessLauncher | None = None,
        geometry: GeometryReconfigurer | None = None,
    ) -> None:
        self.settings = settings
        self.allocator = allocator or ResourceAllocator.from_settings(settings.allocator)
        output_level = logging.getLevelName(settings.logging.process_output.upper())
        if not isinstance(output_level, int):
            output_level = logging.DEBUG
        self.launcher = launcher or SubprocessLauncher(output_level=output_level)
        self.geometry = geometry or GeometryReconfigurer.from_settings(settings)

        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, width: int | None = None, height: int | None = None) -> SessionSummary:
        """
        Provision and start a new session.

        Args:
            width: Requested width (default size when not a positive integer)
            height: Requested height

        Returns:
            Summary of the started session

        Raises:
            AllocationExhausted: If no display/ports are left
            LaunchFailure: If a process could not be started
        """
        allocation = self.allocator.allocate()
        session = Session(
            session_id=str(uuid.uuid4()),
            allocation=allocation,
            settings=self.settings,
            launcher=self.launcher,
            geometry=self.geometry,
            width=width,
            height=height,
        )
        session.add_termination_listener(self._on_session_terminated)

        try:
            with PROVISIONING_DURATION.time():
                session.start()
        except LaunchFailure as e:
            LAUNCH_FAILURES.labels(role=e.role).inc()
            raise

        with self._lock:
            registered = session.state in (SessionState.RUNNING, SessionState.RESIZING)
            if registered:
                self._sessions[session.id] = session
                ACTIVE_SESSIONS.set(len(self._sessions))
        if not registered:
            logger.warning(f"Session {session.id} ended before registration")
            LAUNCH_FAILURES.labels(role=ROLE_APPLICATION).inc()
            raise LaunchFailure(
                ROLE_APPLICATION,
                self.settings.programs.application,
                f"session ended during startup ({session.termination_reason})",
            )
        return session.summary()

    def list(self) -> list[SessionSummary]:
        """Summaries of live sessions in creation order."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.summary() for s in sessions]

    def get(self, session_id: str) -> SessionSummary:
        """
        Raises:
            SessionNotFound: If the id is unknown
        """
        return self._lookup(session_id).summary()

    def stop(self, session_id: str) -> bool:
        """
        Tear a session down.

        Returns:
            False if the id is unknown, True otherwise
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return False
        session.terminate("stopped")
        return True

    def resize(self, session_id: str, width: object, height: object) -> bool:
        """
        Resize a session's display.

        Raises:
            SessionNotFound: If the id is unknown
        """
        session = self._lookup(session_id)
        applied = session.resize(width, height)
        RESIZE_TOTAL.labels(result="success" if applied else "failure").inc()
        return applied

    def stop_all(self, reason: str = "shutdown") -> int:
        """Tear every live session down. Returns the number stopped."""
        with self._lock:
            sessions = list(self._sessions.values())
        stopped = 0
        for session in sessions:
            if session.terminate(reason):
                stopped += 1
        if stopped:
            logger.info(f"Stopped {stopped} sessions ({reason})")
        return stopped

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lookup(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _on_session_terminated(self, session: Session, reason: str) -> None:
        with self._lock:
            removed = self._sessions.pop(session.id, None)
            ACTIVE_SESSIONS.set(len(self._sessions))
        self.allocator.release(session.allocation)
        SESSION_TERMINATIONS.labels(reason=reason).inc()
        if removed is not None:
            logger.info(f"Session {session.id} removed from registry ({reason})")
