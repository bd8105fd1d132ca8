"""Sharing one resource set between many test suites.

A *scope* is a named resource set (e.g. "orders": a database plus a cache).
The first suite that acquires a scope allocates it: resources are started,
probed, given their schema and their reset plans are resolved. Every later
acquirer gets the same `ScopeHandle`. The resources are stopped when the last
holder releases the scope.

State of one scope::

    UNALLOCATED --acquire--> ALLOCATING --ok--> SHARED(n) --last release--> DRAINING
         ^                        |                                            |
         +------ failure ---------+--------------------------------------------+

An allocation failure is sticky: every pending and later acquirer receives
the same exception until `clear_failure` re-arms the scope.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from ephemera import config
from ephemera.adapters.backends.testcontainers_backend import TestcontainersBackend
from ephemera.adapters.health_checks import default_health_check
from ephemera.adapters.redactor import Redactor
from ephemera.domain.descriptor import ResourceDescriptor
from ephemera.domain.errors import ScopeAcquireTimeout, ScopeReleaseError
from ephemera.orchestration.clock import TimeController
from ephemera.orchestration.context import TestContext
from ephemera.orchestration.lifecycle import ContainerLifecycleManager
from ephemera.orchestration.readiness import ProbeSettings, ReadinessProbe
from ephemera.orchestration.registry import ConnectionRegistry

if TYPE_CHECKING:
    from ephemera.interfaces.backend import ContainerBackend
    from ephemera.interfaces.health_check import HealthCheck
    from ephemera.interfaces.redactor import Redactor as RedactorPort
    from ephemera.interfaces.schema_initializer import SchemaInitializer
    from ephemera.interfaces.state_resetter import StateResetter
    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)


class ScopeState(str, Enum):
    """Allocation state of one named scope."""

    UNALLOCATED = "unallocated"
    ALLOCATING = "allocating"
    SHARED = "shared"
    DRAINING = "draining"


@dataclass(frozen=True)
class ManagedResource:
    """A descriptor together with what the scope does with it.

    Attributes:
        descriptor: What to provision.
        health_check: Readiness check; defaults to one picked from the kind.
        schema: Applied once after the resource is ready.
        resetter: Run before every test of the scope.
    """

    descriptor: ResourceDescriptor
    health_check: HealthCheck | None = None
    schema: SchemaInitializer | None = None
    resetter: StateResetter | None = None

    @property
    def name(self) -> str:
        """Name of the resource."""
        return self.descriptor.name


@dataclass(frozen=True)
class ResourceSet:
    """Named group of resources shared as one scope.

    Attributes:
        name: Scope name; acquirers of the same name share one allocation.
        resources: Resources in start order. Bare descriptors are accepted
            and wrapped in `ManagedResource`.
        backend: Backend for this set; overrides the coordinator's default.
    """

    name: str
    resources: tuple[ManagedResource, ...] = ()
    backend: ContainerBackend | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Scope name must not be empty")
        resources = tuple(
            item if isinstance(item, ManagedResource) else ManagedResource(item)
            for item in self.resources
        )
        seen: set[str] = set()
        for item in resources:
            if item.name in seen:
                raise ValueError(
                    f"Scope {self.name!r}: resource name {item.name!r} is used twice"
                )
            seen.add(item.name)
        object.__setattr__(self, "resources", resources)

    @classmethod
    def of(
        cls,
        name: str,
        resources: Iterable[ManagedResource | ResourceDescriptor],
        backend: ContainerBackend | None = None,
    ) -> ResourceSet:
        """Build a set from any iterable of resources or descriptors."""
        return cls(name, tuple(resources), backend)  # type: ignore[arg-type]

    @property
    def descriptors(self) -> list[ResourceDescriptor]:
        """The descriptors, in start order."""
        return [item.descriptor for item in self.resources]


class ScopeHandle:
    """An allocated scope, shared by everyone who acquired it.

    Attributes:
        name: Scope name.
        resource_set: What was allocated.
        resources: Resource handles by name, all READY.
        connections: The scope's connection registry.
        created_at: When the allocation finished (UTC).
        lifecycle: Manager that owns the scope's resources.
    """

    def __init__(
        self,
        resource_set: ResourceSet,
        resources: dict[str, ResourceHandle],
        connections: ConnectionRegistry,
        lifecycle: ContainerLifecycleManager,
    ) -> None:
        self.name = resource_set.name
        self.resource_set = resource_set
        self.resources = resources
        self.connections = connections
        self.lifecycle = lifecycle
        self.created_at = datetime.now(timezone.utc)
        self._refcount = 0
        self._test_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"ScopeHandle(name={self.name!r}, refcount={self._refcount})"

    @property
    def refcount(self) -> int:
        """Number of current holders. Maintained by the coordinator."""
        return self._refcount

    def reset(self) -> None:
        """Run every resetter of the scope, in resource order.

        Raises:
            ResetFailure: from the first resetter that fails.
        """
        for item in self.resource_set.resources:
            if item.resetter is not None:
                item.resetter.reset(self.resources[item.name])

    def close(self) -> None:
        """Close the registry and the resetters, then stop every resource."""
        self.connections.close()
        for item in self.resource_set.resources:
            if item.resetter is not None:
                item.resetter.close()
        self.lifecycle.stop_all()


class _ScopeEntry:
    """Coordinator-side bookkeeping of one scope name."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.cond = threading.Condition()
        self.state = ScopeState.UNALLOCATED
        self.handle: ScopeHandle | None = None
        self.failure: BaseException | None = None
        self.refcount = 0


class ScopeCoordinator:
    """Allocates scopes on first use and drains them on last release.

    Different scope names are independent: each has its own lock, its own
    lifecycle manager and its own registry, so a failing or slow scope never
    blocks another one.

    Args:
        backend: Default backend for resource sets that do not bring one.
            Defaults to `TestcontainersBackend`.
        probe: Readiness probe; defaults to settings from the environment.
        acquire_timeout: Default seconds an acquirer waits for another
            acquirer's allocation, and a test waits for the scope's test lock
            (``None`` waits indefinitely).
        launch_timeout: Seconds a backend launch may take; ``None`` reads
            `EPHEMERA_LAUNCH_TIMEOUT` (unbounded when unset).
        redactor: Redactor for the registries' log output.
    """

    def __init__(
        self,
        backend: ContainerBackend | None = None,
        *,
        probe: ReadinessProbe | None = None,
        acquire_timeout: float | None = None,
        launch_timeout: float | None = None,
        redactor: RedactorPort | None = None,
    ) -> None:
        self._backend = backend
        self._probe = probe or ReadinessProbe(ProbeSettings.from_env())
        self._acquire_timeout = acquire_timeout
        self._launch_timeout = (
            config.get_launch_timeout() if launch_timeout is None else launch_timeout
        )
        self._redactor = redactor or Redactor()
        self._lock = threading.Lock()
        self._entries: dict[str, _ScopeEntry] = {}

    @property
    def backend(self) -> ContainerBackend:
        """The default backend, created on first use."""
        with self._lock:
            if self._backend is None:
                self._backend = TestcontainersBackend()
            return self._backend

    def _entry(self, name: str) -> _ScopeEntry:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                entry = self._entries[name] = _ScopeEntry(name)
            return entry

    # --- introspection ---

    def state(self, name: str) -> ScopeState:
        """Current state of the scope `name`."""
        entry = self._entry(name)
        with entry.cond:
            return entry.state

    def refcount(self, name: str) -> int:
        """Current number of holders of the scope `name`."""
        entry = self._entry(name)
        with entry.cond:
            return entry.refcount

    def failure(self, name: str) -> BaseException | None:
        """The sticky allocation failure of `name`, if any."""
        entry = self._entry(name)
        with entry.cond:
            return entry.failure

    def clear_failure(self, name: str) -> bool:
        """Forget a sticky allocation failure so the next acquire retries.

        Returns:
            bool: True if there was a failure to clear.
        """
        entry = self._entry(name)
        with entry.cond:
            had_failure = entry.failure is not None
            entry.failure = None
        if had_failure:
            logger.info("Cleared allocation failure of scope %s", name)
        return had_failure

    # --- acquire / release ---

    def acquire(
        self, resource_set: ResourceSet, *, timeout: float | None = None
    ) -> ScopeHandle:
        """Join the scope, allocating it if nobody holds it.

        Args:
            resource_set: The scope to acquire.
            timeout: Seconds to wait while another acquirer allocates (or the
                last holder drains). This caller's own allocation is bounded
                by the launch timeout and the readiness probe instead.

        Returns:
            ScopeHandle: The shared handle.

        Raises:
            ResourceStartupFailure | ReadinessTimeout | SchemaScriptMissing |
                SchemaInitializationFailure | ResetPolicyError: the (sticky)
                allocation failure.
            ScopeAcquireTimeout: if waiting for another acquirer timed out.
            ValueError: if a different resource set is already shared under
                the same name.
        """
        name = resource_set.name
        entry = self._entry(name)
        wait = self._acquire_timeout if timeout is None else timeout
        deadline = None if wait is None else time.monotonic() + wait

        with entry.cond:
            while True:
                if entry.failure is not None:
                    raise entry.failure
                if entry.state is ScopeState.SHARED:
                    handle = entry.handle
                    assert handle is not None
                    if handle.resource_set != resource_set:
                        raise ValueError(
                            f"Scope {name!r} is already shared with a different "
                            "resource set"
                        )
                    entry.refcount += 1
                    handle._refcount = entry.refcount  # pylint: disable=protected-access
                    logger.debug("Joined scope %s (refcount %d)", name, entry.refcount)
                    return handle
                if entry.state is ScopeState.UNALLOCATED:
                    entry.state = ScopeState.ALLOCATING
                    break
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise ScopeAcquireTimeout(name, wait or 0.0)
                entry.cond.wait(remaining)

        try:
            handle = self._allocate(resource_set)
        except BaseException as exc:
            with entry.cond:
                if isinstance(exc, Exception):
                    entry.failure = exc
                entry.state = ScopeState.UNALLOCATED
                entry.cond.notify_all()
            raise

        with entry.cond:
            entry.handle = handle
            entry.refcount = 1
            handle._refcount = 1  # pylint: disable=protected-access
            entry.state = ScopeState.SHARED
            entry.cond.notify_all()
        return handle

    def _allocate(self, resource_set: ResourceSet) -> ScopeHandle:
        name = resource_set.name
        logger.info(
            "Allocating scope %s (%s)",
            name,
            ", ".join(item.name for item in resource_set.resources) or "empty",
        )
        started = time.monotonic()
        backend = resource_set.backend or self.backend
        manager = ContainerLifecycleManager(
            backend, launch_timeout=self._launch_timeout
        )
        handles: dict[str, ResourceHandle] = {}
        try:
            # launch everything first so containers boot in parallel
            for item in resource_set.resources:
                handles[item.name] = manager.start(item.descriptor)
            for item in resource_set.resources:
                check = (
                    item.health_check
                    or backend.health_check_for(item.descriptor)
                    or default_health_check(item.descriptor)
                )
                self._probe.wait_ready(handles[item.name], check)
            for item in resource_set.resources:
                if item.schema is not None:
                    item.schema.apply(handles[item.name])
            for item in resource_set.resources:
                if item.resetter is not None:
                    item.resetter.prepare(handles[item.name])
        except BaseException as exc:
            logger.error("Allocation of scope %s failed: %s", name, exc)
            self._stop_partial(resource_set, manager)
            raise

        registry = ConnectionRegistry(handles, redactor=self._redactor)
        logger.info("Scope %s ready in %.2fs", name, time.monotonic() - started)
        for resource_name, url in registry.describe().items():
            logger.info("  %s: %s", resource_name, url)
        return ScopeHandle(resource_set, handles, registry, manager)

    @staticmethod
    def _stop_partial(
        resource_set: ResourceSet, manager: ContainerLifecycleManager
    ) -> None:
        for item in resource_set.resources:
            if item.resetter is not None:
                item.resetter.close()
        try:
            manager.stop_all()
        except Exception as exc:  # pylint: disable=broad-except
            # only logged; the allocation error propagates
            logger.error(
                "Could not stop resources of scope %s: %s", resource_set.name, exc
            )

    def release(self, handle: ScopeHandle) -> None:
        """Leave the scope; the last holder drains it.

        Raises:
            ScopeReleaseError: if `handle` is not currently held (released
                more often than acquired, or already drained).
        """
        entry = self._entry(handle.name)
        with entry.cond:
            if (
                entry.state is not ScopeState.SHARED
                or entry.handle is not handle
                or entry.refcount <= 0
            ):
                raise ScopeReleaseError(
                    f"Scope {handle.name!r} is not held (state: {entry.state.value})"
                )
            entry.refcount -= 1
            handle._refcount = entry.refcount  # pylint: disable=protected-access
            if entry.refcount > 0:
                logger.debug(
                    "Left scope %s (refcount %d)", handle.name, entry.refcount
                )
                return
            entry.state = ScopeState.DRAINING
        self._drain(entry, handle)

    def _drain(self, entry: _ScopeEntry, handle: ScopeHandle) -> None:
        logger.info("Draining scope %s", handle.name)
        try:
            handle.close()
        finally:
            with entry.cond:
                entry.handle = None
                entry.refcount = 0
                entry.state = ScopeState.UNALLOCATED
                entry.cond.notify_all()

    @contextmanager
    def scope(
        self, resource_set: ResourceSet, *, timeout: float | None = None
    ) -> Iterator[ScopeHandle]:
        """Acquire `resource_set` for the duration of a ``with`` block."""
        handle = self.acquire(resource_set, timeout=timeout)
        try:
            yield handle
        finally:
            self.release(handle)

    @contextmanager
    def test_context(
        self,
        handle: ScopeHandle,
        anchor: datetime | None = None,
        *,
        timeout: float | None = None,
    ) -> Iterator[TestContext]:
        """Per-test context: exclusive access, clean state, fresh clock.

        Tests of one scope run one at a time: the scope's test lock is held
        for the whole ``with`` block. Every resetter runs before the context
        is handed out, so each test starts from the baseline regardless of
        what the previous one left behind.

        Args:
            handle: A currently held scope.
            anchor: Starting instant of the test's clock.
            timeout: Seconds to wait while another test of the scope holds
                its context; defaults to the coordinator's acquire timeout.

        Raises:
            ScopeReleaseError: if `handle` is not held.
            ScopeAcquireTimeout: if another test kept the scope for longer
                than `timeout`.
            ResetFailure: if restoring the baseline failed.
        """
        if handle.refcount <= 0:
            raise ScopeReleaseError(f"Scope {handle.name!r} is not held")
        wait = self._acquire_timeout if timeout is None else timeout
        test_lock = handle._test_lock  # pylint: disable=protected-access
        if not test_lock.acquire(timeout=-1 if wait is None else wait):
            logger.error(
                "Scope %s still busy with another test after %.1fs", handle.name, wait
            )
            raise ScopeAcquireTimeout(handle.name, wait or 0.0)
        try:
            handle.reset()
            clock = TimeController(anchor)
            yield TestContext(scope=handle, connections=handle.connections, clock=clock)
        finally:
            test_lock.release()

    def shutdown(self) -> None:
        """Drain every scope that is still shared, regardless of its refcount.

        Every scope is attempted; the first error is re-raised afterwards.
        """
        with self._lock:
            entries = list(self._entries.values())
        first_error: Exception | None = None
        for entry in entries:
            with entry.cond:
                if entry.state is not ScopeState.SHARED or entry.handle is None:
                    continue
                handle = entry.handle
                if entry.refcount:
                    logger.warning(
                        "Scope %s still has %d holder(s) at shutdown",
                        entry.name,
                        entry.refcount,
                    )
                entry.refcount = 0
                handle._refcount = 0  # pylint: disable=protected-access
                entry.state = ScopeState.DRAINING
            try:
                self._drain(entry, handle)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to drain scope %s: %s", entry.name, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
