"""Interface for resource-specific health checks used by the readiness probe."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .backend import LaunchedResource

# pylint: disable=too-few-public-methods


class HealthCheck(abc.ABC):
    """A single, bounded attempt at talking to a resource."""

    @abc.abstractmethod
    def check(self, resource: LaunchedResource) -> None:
        """Perform one health check.

        Returns normally when the resource accepts application-level requests.

        Args:
            resource: Endpoint to check.

        Raises:
            Exception: Whatever the client raised; the probe records it as the
                last observed error and retries.
        """

    def __call__(self, resource: LaunchedResource) -> None:
        self.check(resource)
