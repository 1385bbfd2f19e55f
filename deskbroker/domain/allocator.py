"""
Display number and TCP port allocation for sessions.

Every allocation hands out one offset that is applied to three independent
bases (display number, frame-export port, bridge port). Offsets come back to
the pool when the owning session has fully terminated.
"""

from __future__ import annotations

import heapq
import logging
import socket
import threading

from deskbroker.config.models import AllocatorConfig
from deskbroker.domain.errors import AllocationExhausted
from deskbroker.domain.types import Allocation

logger = logging.getLogger("desktop-broker")


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    """
    Check whether a TCP port can be bound on this host.

    Args:
        port: TCP port
        host: Interface to test

    Returns:
        True if the port is free, False otherwise
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class ResourceAllocator:
    """Thread-safe allocator for display numbers and port pairs."""

    def __init__(
        self,
        display_base: int = 100,
        export_port_base: int = 5900,
        bridge_port_base: int = 6080,
        max_sessions: int = 0,
        reclaim: bool = True,
        probe_ports: bool = False,
    ) -> None:
        self.display_base = display_base
        self.export_port_base = export_port_base
        self.bridge_port_base = bridge_port_base
        self.max_sessions = max_sessions
        self.reclaim = reclaim
        self.probe_ports = probe_ports

        self._lock = threading.Lock()
        self._next_offset = 0
        self._free: list[int] = []
        self._in_use: set[int] = set()

    @classmethod
    def from_settings(cls, cfg: AllocatorConfig) -> ResourceAllocator:
        return cls(
            display_base=cfg.display_base,
            export_port_base=cfg.export_port_base,
            bridge_port_base=cfg.bridge_port_base,
            max_sessions=cfg.max_sessions,
            reclaim=cfg.reclaim,
            probe_ports=cfg.probe_ports,
        )

    @property
    def in_use(self) -> int:
        with self._lock:
            return len(self._in_use)

    def allocate(self) -> Allocation:
        """
        Reserve a display number, export port and bridge port.

        Offsets skipped because their ports are bound by another program
        return to the pool (when reclaim is enabled) and are tried again by
        later calls.

        Returns:
            Allocation unique among all live allocations

        Raises:
            AllocationExhausted: If max_sessions offsets are already issued
        """
        skipped: list[int] = []
        with self._lock:
            try:
                while True:
                    offset = self._take_offset()
                    if self.probe_ports and not self._ports_free(offset):
                        logger.warning(
                            f"Ports for offset {offset} already bound "
                            f"({self.export_port_base + offset}/{self.bridge_port_base + offset}), skipping"
                        )
                        skipped.append(offset)
                        continue
                    self._in_use.add(offset)
                    return self._build(offset)
            finally:
                if self.reclaim:
                    for offset in skipped:
                        heapq.heappush(self._free, offset)

    def release(self, allocation: Allocation) -> None:
        """
        Return an allocation to the pool.

        No-op when reclaim is disabled or the allocation is not in use.
        """
        if not self.reclaim:
            return
        with self._lock:
            if allocation.offset not in self._in_use:
                return
            self._in_use.discard(allocation.offset)
            heapq.heappush(self._free, allocation.offset)

    # ------------------------------------------------------------------
    # Internal helpers (called with _lock held)
    # ------------------------------------------------------------------

    def _take_offset(self) -> int:
        if self._free:
            return heapq.heappop(self._free)
        if self.max_sessions and self._next_offset >= self.max_sessions:
            raise AllocationExhausted(self.max_sessions)
        offset = self._next_offset
        self._next_offset += 1
        return offset

    def _ports_free(self, offset: int) -> bool:
        return is_port_free(self.export_port_base + offset) and is_port_free(
            self.bridge_port_base + offset
        )

    def _build(self, offset: int) -> Allocation:
        return Allocation(
            display=self.display_base + offset,
            export_port=self.export_port_base + offset,
            bridge_port=self.bridge_port_base + offset,
            offset=offset,
        )
