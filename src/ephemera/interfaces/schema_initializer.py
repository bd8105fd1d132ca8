"""Interface for applying schema to a freshly provisioned resource.

`SchemaInitializer.apply` is latched per resource instance: whatever the
implementation does runs exactly once per `ResourceHandle`, even when many
callers race to apply it.
"""

from __future__ import annotations

import abc
import threading
from typing import TYPE_CHECKING
from weakref import WeakKeyDictionary

if TYPE_CHECKING:
    from ephemera.orchestration.lifecycle import ResourceHandle


class SchemaInitializer(abc.ABC):
    """Applies schema exactly once per resource instance."""

    def __init__(self) -> None:
        self._latch_lock = threading.Lock()
        self._latches: WeakKeyDictionary[ResourceHandle, threading.Lock] = (
            WeakKeyDictionary()
        )
        self._applied: WeakKeyDictionary[ResourceHandle, bool] = WeakKeyDictionary()

    def apply(self, handle: ResourceHandle) -> bool:
        """Apply schema to `handle` unless it was already applied.

        Concurrent callers for the same handle block until the first one
        finishes. If the first application fails the latch stays open.

        Args:
            handle: A READY resource handle.

        Returns:
            bool: True if this call applied the schema, False if it was a no-op.
        """
        with self._latch_lock:
            latch = self._latches.setdefault(handle, threading.Lock())
        with latch:
            if self._applied.get(handle):
                return False
            self._apply(handle)
            self._applied[handle] = True
            return True

    def is_applied(self, handle: ResourceHandle) -> bool:
        """Return True once schema has been applied to `handle`."""
        return bool(self._applied.get(handle))

    @abc.abstractmethod
    def _apply(self, handle: ResourceHandle) -> None:
        """Do the actual work; called at most once per successful handle."""
