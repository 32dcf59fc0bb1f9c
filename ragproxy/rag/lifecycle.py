"""
Initialization state for long-lived collaborator handles.

Every handle (embedding provider, vector index, document store) owns a
Lifecycle. Operations call ``require_ready()`` first, so using a handle
before ``initialize()`` succeeded always fails with StoreNotReadyError
instead of a None attribute error somewhere deeper.
"""

from __future__ import annotations

from enum import Enum

from ragproxy.rag.errors import StoreNotReadyError


class ComponentState(str, Enum):
    """Lifecycle states of a collaborator handle."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class Lifecycle:
    """Tracks the state of one named component."""

    def __init__(self, component: str):
        self.component = component
        self.state = ComponentState.UNINITIALIZED
        self.error: Exception | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is ComponentState.READY

    def mark_ready(self) -> None:
        self.state = ComponentState.READY
        self.error = None

    def mark_failed(self, error: Exception) -> None:
        self.state = ComponentState.FAILED
        self.error = error

    def mark_closed(self) -> None:
        self.state = ComponentState.CLOSED

    def require_ready(self) -> None:
        """Raise StoreNotReadyError unless the component is READY."""
        if self.state is not ComponentState.READY:
            raise StoreNotReadyError(self.component, self.state.value)
