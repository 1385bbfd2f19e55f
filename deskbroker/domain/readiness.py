"""
Readiness probes used between startup steps.
"""

import logging
import os
import socket
import time

from deskbroker.config.settings import X11_SOCKET_DIR

logger = logging.getLogger("desktop-broker")


def display_socket_path(display: int) -> str:
    """Path of the unix socket an X server creates for a display number."""
    return os.path.join(X11_SOCKET_DIR, f"X{display}")


def wait_for_display(display: int, timeout: float = 10.0, interval: float = 0.1) -> bool:
    """
    Wait for an X server to create its socket.

    Args:
        display: X display number
        timeout: Timeout in seconds
        interval: Poll interval in seconds

    Returns:
        True if the display is accepting connections, False on timeout
    """
    path = display_socket_path(display)
    start = time.time()
    while time.time() - start < timeout:
        if os.path.exists(path):
            return True
        time.sleep(interval)
    logger.warning(f"Display :{display} not ready after {timeout}s")
    return False


def wait_for_port(host: str, port: int, timeout: float = 10.0) -> bool:
    """
    Wait for a TCP server to be available.

    Args:
        host: Host
        port: Port
        timeout: Timeout in seconds

    Returns:
        True if the port accepts connections, False on timeout
    """
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except (socket.timeout, ConnectionRefusedError, OSError):
            time.sleep(0.5)
    return False
