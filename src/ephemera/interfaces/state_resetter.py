"""Interface for restoring a resource's mutable state to a baseline."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ephemera.orchestration.lifecycle import ResourceHandle


class StateResetter(abc.ABC):
    """Empties the mutable data of a resource while keeping its schema."""

    @abc.abstractmethod
    def prepare(self, handle: ResourceHandle) -> None:
        """Resolve whatever the reset needs (e.g. table order), once per handle.

        Called after schema initialization; calling it again is a no-op.
        """

    @abc.abstractmethod
    def reset(self, handle: ResourceHandle) -> None:
        """Remove all included data from the resource.

        Must be a no-op on an already empty resource and must leave the
        resource untouched if it fails.

        Raises:
            ResetFailure: if the reset could not be applied.
            ResourceNotReady: if the handle is not READY.
        """

    def close(self) -> None:
        """Release clients/engines held for resets. Default: nothing to do."""
