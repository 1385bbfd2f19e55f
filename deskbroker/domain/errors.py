"""
Exceptions raised by the session orchestration engine.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for broker domain errors."""


class AllocationExhausted(BrokerError):
    """Raised when no display number / port pair is left to hand out."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Allocator exhausted ({limit} sessions max)")


class LaunchFailure(BrokerError):
    """Raised when a required external program could not be started."""

    def __init__(self, role: str, program: str, reason: str = "") -> None:
        self.role = role
        self.program = program
        self.reason = reason
        message = f"Failed to launch {role} ({program})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class GeometryFailure(BrokerError):
    """Raised when a display mode could not be generated or applied."""

    def __init__(self, stage: str, detail: str = "") -> None:
        self.stage = stage
        self.detail = detail
        super().__init__(f"Geometry {stage} failed: {detail}" if detail else f"Geometry {stage} failed")


class UnexpectedExit(BrokerError):
    """A supervised process other than the application died prematurely."""

    def __init__(self, role: str, returncode: int | None) -> None:
        self.role = role
        self.returncode = returncode
        super().__init__(f"Process {role} exited unexpectedly (code {returncode})")


class SessionNotFound(BrokerError):
    """Raised when an operation references an unknown session id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")
