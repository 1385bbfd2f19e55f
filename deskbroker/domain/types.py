"""
Typed data structures for the broker domain.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any


class SessionState(enum.Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    RESIZING = "resizing"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Allocation:
    """Display number and port pair reserved for one session."""

    display: int
    export_port: int
    bridge_port: int
    offset: int = 0


@dataclass
class SessionSummary:
    """Public view of a session; process handles are never exposed."""

    session_id: str
    display: str
    bridge_port: int
    created_at: datetime
    width: int
    height: int
    state: SessionState

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "display": self.display,
            "bridgePort": self.bridge_port,
            "createdAt": self.created_at.isoformat(),
            "width": self.width,
            "height": self.height,
            "state": self.state.value,
        }
