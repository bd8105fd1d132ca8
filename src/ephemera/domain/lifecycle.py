"""Lifecycle states of a provisioned resource instance."""

from __future__ import annotations

from enum import Enum

from .errors import InvalidLifecycleTransition


class LifecycleState(str, Enum):
    """State of one resource instance.

    Transitions are monotonic except READY → STOPPED:

        CREATED → STARTING → READY → STOPPED
                          ↘ FAILED → STOPPED
        CREATED → STOPPED
    """

    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"

    def can_transition_to(self, target: LifecycleState) -> bool:
        """Return True if moving from this state to `target` is allowed."""
        return target in _TRANSITIONS[self]

    def check_transition(self, target: LifecycleState, resource: str) -> None:
        """Raise if moving from this state to `target` is not allowed.

        Raises:
            InvalidLifecycleTransition: for a disallowed transition.
        """
        if not self.can_transition_to(target):
            raise InvalidLifecycleTransition(resource, self.value, target.value)

    @property
    def is_terminal(self) -> bool:
        """True for STOPPED, from which nothing else is reachable."""
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.CREATED: frozenset({LifecycleState.STARTING, LifecycleState.STOPPED}),
    LifecycleState.STARTING: frozenset({LifecycleState.READY, LifecycleState.FAILED}),
    LifecycleState.READY: frozenset({LifecycleState.STOPPED}),
    LifecycleState.FAILED: frozenset({LifecycleState.STOPPED}),
    LifecycleState.STOPPED: frozenset(),
}
