"""Interface for the process/container backends that host resources.

A backend knows how to turn a `ResourceDescriptor` into something running
and reachable, and how to make it go away again. It holds no lifecycle state
of its own; `ContainerLifecycleManager` decides when to call it.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor

    from .health_check import HealthCheck


@dataclass(frozen=True)
class LaunchedResource:
    """Endpoint information for a launched resource.

    Attributes:
        host: Host the resource is reachable on from the test process.
        port: Host-side port.
        connection_url: URL clients connect with.
        container_id: Backend identifier (container id, file path, ...), if any.
        native: Backend-specific object needed to terminate the resource.
    """

    host: str
    port: int
    connection_url: str
    container_id: str | None = None
    native: Any = field(default=None, compare=False, repr=False)


class ContainerBackend(abc.ABC):
    """Launches and terminates resources described by descriptors."""

    @abc.abstractmethod
    def launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        """Launch the resource and return its endpoint.

        Returning means the process/container has been started, not that it
        accepts requests; readiness is checked separately.

        Args:
            descriptor: What to launch.

        Returns:
            LaunchedResource: Endpoint of the launched resource.

        Raises:
            Exception: Any backend error; the lifecycle manager wraps it in
                `ResourceStartupFailure`.
        """

    @abc.abstractmethod
    def terminate(self, resource: LaunchedResource) -> None:
        """Stop the resource and free everything the launch allocated."""

    def health_check_for(self, descriptor: ResourceDescriptor) -> HealthCheck | None:
        """Backend-specific health check for `descriptor`, if it needs one.

        Returns ``None`` by default, meaning the kind's default check applies.
        """
        return None
