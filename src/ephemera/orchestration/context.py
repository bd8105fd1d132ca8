"""What a single test gets to see of its environment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ephemera.orchestration.clock import TimeController
    from ephemera.orchestration.registry import ConnectionRegistry
    from ephemera.orchestration.scope import ScopeHandle


@dataclass(frozen=True)
class TestContext:
    """Per-test view of a shared scope.

    Built by `ScopeCoordinator.test_context`, after every resetter of the
    scope has run. The clock is fresh for each test; the scope and its
    connections are shared with every other test of the same scope.

    Attributes:
        scope: The acquired scope.
        connections: Connection endpoints of the scope's resources.
        clock: This test's virtual clock.
    """

    __test__ = False  # not a pytest test class

    scope: ScopeHandle
    connections: ConnectionRegistry
    clock: TimeController

    def connection_url(self, name: str, timeout: float | None = None) -> str:
        """Shortcut for `connections.connection_url`."""
        return self.connections.connection_url(name, timeout)
