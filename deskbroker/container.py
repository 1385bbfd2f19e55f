"""
Holder for the process-wide session registry.

Request handlers reach it through ``current_app.extensions['services']``;
code without an application context (the atexit hook, process watcher
threads) uses the module-level fallback installed by app.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deskbroker.domain.registry import SessionRegistry


class ServiceContainer:
    """Builds the SessionRegistry on first use from the current broker config."""

    def __init__(self) -> None:
        self._registry: SessionRegistry | None = None

    @property
    def registry(self) -> SessionRegistry:
        if self._registry is None:
            from deskbroker.config.loader import BrokerConfig
            from deskbroker.domain.registry import SessionRegistry

            self._registry = SessionRegistry(BrokerConfig.settings())
        return self._registry

    def shutdown(self) -> None:
        """Stop all sessions; a registry that was never built has none."""
        if self._registry is not None:
            self._registry.stop_all()


_global_container: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    """
    Return the active ServiceContainer.

    Raises:
        RuntimeError: If app.py has not installed one yet
    """
    try:
        from flask import current_app

        return current_app.extensions["services"]
    except (RuntimeError, KeyError):
        pass
    if _global_container is None:
        raise RuntimeError("ServiceContainer not initialized")
    return _global_container
