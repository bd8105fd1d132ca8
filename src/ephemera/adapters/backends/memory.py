"""In-memory backend for exercising the orchestration layer without Docker.

Nothing is actually started: `launch` hands out a fake endpoint, counts the
call and can be scripted to fail or to take a while. Tests assert on
`launch_count` / `terminate_count` to check "started exactly once" and
"stopped exactly once" properties.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import Counter
from typing import TYPE_CHECKING

from ephemera.interfaces.backend import ContainerBackend, LaunchedResource
from ephemera.interfaces.health_check import HealthCheck

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor

FIRST_FAKE_PORT = 49152


class ScriptedHealthCheck(HealthCheck):
    """Fails the first `failures` checks, then passes.

    Attributes:
        calls: Number of checks performed so far.
    """

    def __init__(self, failures: int = 0, error: type[Exception] = ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def check(self, resource: LaunchedResource) -> None:
        with self._lock:
            self.calls += 1
            calls = self.calls
        if calls <= self.failures:
            raise self.error(f"{resource.connection_url} refused (check {calls})")


class InMemoryBackend(ContainerBackend):
    """Fake backend with launch counting and failure injection.

    Args:
        delay: Seconds every launch takes.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self._lock = threading.Lock()
        self._ports = itertools.count(FIRST_FAKE_PORT)
        self._launches: Counter[str] = Counter()
        self._terminations: Counter[str] = Counter()
        self._failures: dict[str, Exception] = {}
        self._terminate_failures: dict[str, Exception] = {}
        self._running: dict[str, LaunchedResource] = {}

    def fail_launch(self, name: str, error: Exception | None = None) -> None:
        """Make every launch of `name` raise `error`."""
        with self._lock:
            self._failures[name] = error or RuntimeError(f"cannot launch {name}")

    def fail_terminate(self, name: str, error: Exception | None = None) -> None:
        """Make terminating `name` raise `error`."""
        with self._lock:
            self._terminate_failures[name] = error or RuntimeError(
                f"cannot terminate {name}"
            )

    def clear_failures(self) -> None:
        """Forget every injected failure."""
        with self._lock:
            self._failures.clear()
            self._terminate_failures.clear()

    def launch_count(self, name: str) -> int:
        """How many times `name` was launched (including failed launches)."""
        with self._lock:
            return self._launches[name]

    def terminate_count(self, name: str) -> int:
        """How many times `name` was terminated."""
        with self._lock:
            return self._terminations[name]

    @property
    def running(self) -> list[str]:
        """Names launched and not terminated yet."""
        with self._lock:
            return list(self._running)

    def launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        with self._lock:
            self._launches[descriptor.name] += 1
            failure = self._failures.get(descriptor.name)
            port = next(self._ports)
        if self.delay:
            time.sleep(self.delay)
        if failure is not None:
            raise failure
        host = "memory"
        url = descriptor.render_url(host, port) or f"memory://{host}:{port}/{descriptor.name}"
        resource = LaunchedResource(
            host=host,
            port=port,
            connection_url=url,
            container_id=f"{descriptor.name}-{port}",
            native=descriptor.name,
        )
        with self._lock:
            self._running[descriptor.name] = resource
        return resource

    def terminate(self, resource: LaunchedResource) -> None:
        name = resource.native
        with self._lock:
            self._terminations[name] += 1
            self._running.pop(name, None)
            failure = self._terminate_failures.get(name)
        if failure is not None:
            raise failure

    def health_check_for(self, descriptor: ResourceDescriptor) -> HealthCheck | None:
        return ScriptedHealthCheck()
