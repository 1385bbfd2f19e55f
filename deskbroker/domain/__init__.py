"""Domain module containing the session orchestration engine."""

from deskbroker.domain.allocator import ResourceAllocator
from deskbroker.domain.errors import (
    BrokerError,
    AllocationExhausted,
    LaunchFailure,
    GeometryFailure,
    UnexpectedExit,
    SessionNotFound,
)
from deskbroker.domain.geometry import GeometryReconfigurer, ModeLine
from deskbroker.domain.process import ProcessHandle, ProcessLauncher, SubprocessLauncher
from deskbroker.domain.registry import SessionRegistry
from deskbroker.domain.session import Session
from deskbroker.domain.types import Allocation, SessionState, SessionSummary

__all__ = [
    "ResourceAllocator",
    "BrokerError",
    "AllocationExhausted",
    "LaunchFailure",
    "GeometryFailure",
    "UnexpectedExit",
    "SessionNotFound",
    "GeometryReconfigurer",
    "ModeLine",
    "ProcessHandle",
    "ProcessLauncher",
    "SubprocessLauncher",
    "SessionRegistry",
    "Session",
    "Allocation",
    "SessionState",
    "SessionSummary",
]
