"""Configuration module for the Desktop Session Broker."""

from deskbroker.config.settings import (
    DEFAULT_WIDTH,
    DEFAULT_HEIGHT,
    COLOR_DEPTH,
    MAX_DIMENSION,
    PROCESS_ROLES,
    get_env,
)
from deskbroker.config.models import BrokerSettings
from deskbroker.config.loader import (
    BrokerConfig,
    CONFIG_PATH,
    BROKER_CONFIG_FILE,
)

__all__ = [
    "DEFAULT_WIDTH",
    "DEFAULT_HEIGHT",
    "COLOR_DEPTH",
    "MAX_DIMENSION",
    "PROCESS_ROLES",
    "get_env",
    "BrokerSettings",
    "BrokerConfig",
    "CONFIG_PATH",
    "BROKER_CONFIG_FILE",
]
