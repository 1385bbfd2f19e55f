"""
Constants and settings for the Desktop Session Broker.
"""

import os

# =============================================================================
# Constants
# =============================================================================

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
COLOR_DEPTH = 24
MAX_DIMENSION = 8192

# Roles of the processes owned by a session, in startup order
ROLE_DISPLAY = "display"
ROLE_WINDOW_MANAGER = "windowManager"
ROLE_FRAME_EXPORT = "frameExport"
ROLE_BRIDGE = "bridge"
ROLE_APPLICATION = "application"

PROCESS_ROLES = (
    ROLE_DISPLAY,
    ROLE_WINDOW_MANAGER,
    ROLE_FRAME_EXPORT,
    ROLE_BRIDGE,
    ROLE_APPLICATION,
)

# Xvfb creates one socket per display here
X11_SOCKET_DIR = "/tmp/.X11-unix"


def get_env(key: str, default: str = None, required: bool = False) -> str:
    """
    Retrieve a configuration value from the environment.

    Args:
        key: Configuration key (looked up as KEY in upper case)
        default: Default value
        required: Whether the value is required

    Returns:
        Configuration value

    Raises:
        ValueError: If required value is missing
    """
    env_key = key.upper().replace("-", "_")
    value = os.environ.get(env_key, default)
    if required and not value:
        raise ValueError(f"Required configuration missing: {key}")
    return value
