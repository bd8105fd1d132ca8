"""Starting and stopping resources exactly once per scope.

`ContainerLifecycleManager` owns one `ResourceHandle` per resource name.
`start()` is idempotent: whoever calls first launches the resource through
the backend, everybody else gets the same handle. A launch failure is stored
on the handle so every waiter, present and future, sees the same
`ResourceStartupFailure` instead of hanging or launching a duplicate.

With a `launch_timeout` the launch itself is bounded too: a backend call
that hangs (an image pull over a dead registry) fails the resource after the
timeout, and whatever it launches later is terminated.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import TYPE_CHECKING

from ephemera.domain.descriptor import LifetimePolicy
from ephemera.domain.errors import ResourceNotReady, ResourceStartupFailure
from ephemera.domain.lifecycle import LifecycleState

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor
    from ephemera.interfaces.backend import ContainerBackend, LaunchedResource

logger = logging.getLogger(__name__)


class ResourceHandle:
    """Runtime state machine of one resource instance.

    The handle is the only owner of its `LifecycleState`. Readers block on it
    through `wait_launched` / `wait_ready`; the lifecycle manager and the
    readiness probe drive the transitions.
    """

    def __init__(self, descriptor: ResourceDescriptor) -> None:
        self.descriptor = descriptor
        self._cond = threading.Condition()
        self._state = LifecycleState.CREATED
        self._resource: LaunchedResource | None = None
        self._error: BaseException | None = None

    def __repr__(self) -> str:
        return f"ResourceHandle(name={self.name!r}, state={self._state.value!r})"

    @classmethod
    def external(
        cls, descriptor: ResourceDescriptor, resource: LaunchedResource
    ) -> ResourceHandle:
        """Wrap an already running resource (e.g. a URL given on the CLI) as READY."""
        handle = cls(descriptor)
        handle.begin_start()
        handle.attach(resource)
        handle.mark_ready()
        return handle

    # --- read side ---

    @property
    def name(self) -> str:
        """Name of the resource inside its scope."""
        return self.descriptor.name

    @property
    def state(self) -> LifecycleState:
        """Current lifecycle state."""
        with self._cond:
            return self._state

    @property
    def error(self) -> BaseException | None:
        """Failure recorded when the handle moved to FAILED, if any."""
        with self._cond:
            return self._error

    @property
    def resource(self) -> LaunchedResource:
        """Endpoint of a READY resource.

        Raises:
            ResourceNotReady: if the handle is not READY.
        """
        with self._cond:
            if self._state is not LifecycleState.READY or self._resource is None:
                raise ResourceNotReady(self.name, self._state.value)
            return self._resource

    @property
    def launched(self) -> LaunchedResource | None:
        """Endpoint as soon as the backend launched it, ready or not."""
        with self._cond:
            return self._resource

    def wait_launched(self, timeout: float | None = None) -> LaunchedResource:
        """Block until the backend launch has settled.

        Raises:
            BaseException: the recorded failure, if the launch failed.
            ResourceNotReady: on timeout, or if the handle was stopped.
        """
        with self._cond:
            settled = self._cond.wait_for(
                lambda: self._resource is not None
                or self._state in (LifecycleState.FAILED, LifecycleState.STOPPED),
                timeout=timeout,
            )
            self._raise_if_unusable(settled)
            assert self._resource is not None
            return self._resource

    def wait_ready(self, timeout: float | None = None) -> LaunchedResource:
        """Block until the resource is READY and return its endpoint.

        Args:
            timeout: Seconds to wait; ``None`` waits indefinitely, ``0`` does
                not wait at all.

        Raises:
            BaseException: the recorded failure, if the resource FAILED.
            ResourceNotReady: on timeout, or if the handle was stopped.
        """
        with self._cond:
            settled = self._cond.wait_for(
                lambda: self._state
                in (LifecycleState.READY, LifecycleState.FAILED, LifecycleState.STOPPED),
                timeout=timeout,
            )
            self._raise_if_unusable(settled)
            if self._state is not LifecycleState.READY:
                raise ResourceNotReady(self.name, self._state.value)
            assert self._resource is not None
            return self._resource

    def wait_settled(self, timeout: float | None = None) -> bool:
        """Wait for an in-flight launch to finish either way, without raising.

        Returns:
            bool: False if the timeout expired first.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._resource is not None
                or self._state is not LifecycleState.STARTING,
                timeout=timeout,
            )

    def _raise_if_unusable(self, settled: bool) -> None:
        if self._state is LifecycleState.FAILED and self._error is not None:
            raise self._error
        if not settled or self._state is LifecycleState.STOPPED:
            raise ResourceNotReady(self.name, self._state.value)

    # --- transitions ---

    def _move(self, target: LifecycleState) -> None:
        self._state.check_transition(target, self.name)
        logger.debug("%s: %s -> %s", self.name, self._state.value, target.value)
        self._state = target
        self._cond.notify_all()

    def begin_start(self) -> None:
        """CREATED → STARTING."""
        with self._cond:
            self._move(LifecycleState.STARTING)

    def attach(self, resource: LaunchedResource) -> None:
        """Record the launched endpoint; the state stays STARTING until probed."""
        with self._cond:
            if self._state is not LifecycleState.STARTING:
                raise ResourceNotReady(self.name, self._state.value)
            self._resource = resource
            self._cond.notify_all()

    def mark_ready(self) -> None:
        """STARTING → READY (requires an attached endpoint); idempotent."""
        with self._cond:
            if self._state is LifecycleState.READY:
                return
            if self._resource is None:
                raise ResourceNotReady(self.name, self._state.value)
            self._move(LifecycleState.READY)

    def mark_failed(self, error: BaseException) -> None:
        """STARTING → FAILED, recording the error every waiter will receive."""
        with self._cond:
            self._error = error
            self._move(LifecycleState.FAILED)

    def mark_stopped(self) -> bool:
        """Move to STOPPED; returns False if the handle already was STOPPED."""
        with self._cond:
            if self._state is LifecycleState.STOPPED:
                return False
            self._move(LifecycleState.STOPPED)
            return True


class ContainerLifecycleManager:
    """Starts and stops the resources of one scope through a backend.

    Args:
        backend: Backend that launches/terminates resources.
        launch_timeout: Seconds a backend launch may take, and seconds a
            concurrent `start` caller waits for an in-flight launch by
            another caller; ``None`` waits indefinitely.
    """

    def __init__(
        self, backend: ContainerBackend, launch_timeout: float | None = None
    ) -> None:
        self._backend = backend
        self._launch_timeout = launch_timeout
        self._lock = threading.Lock()
        self._handles: dict[str, ResourceHandle] = {}

    @property
    def handles(self) -> dict[str, ResourceHandle]:
        """Snapshot of the handles started so far, in start order."""
        with self._lock:
            return dict(self._handles)

    def start(self, descriptor: ResourceDescriptor) -> ResourceHandle:
        """Launch the resource unless it is already starting or running.

        Args:
            descriptor: Resource to start.

        Returns:
            ResourceHandle: The (possibly pre-existing) handle, launched but
            not yet probed for readiness.

        Raises:
            ResourceStartupFailure: if the launch failed (for this caller and
                every other caller of the same resource).
            ValueError: if a different descriptor is already registered under
                the same name.
        """
        with self._lock:
            handle = self._handles.get(descriptor.name)
            if handle is not None and handle.descriptor != descriptor:
                raise ValueError(
                    f"Resource name {descriptor.name!r} is already used by a "
                    "different descriptor in this scope"
                )
            owner = handle is None or handle.state is LifecycleState.STOPPED
            if owner:
                handle = ResourceHandle(descriptor)
                handle.begin_start()
                self._handles[descriptor.name] = handle
        assert handle is not None

        if not owner:
            logger.debug("%s already %s; reusing handle", handle.name, handle.state.value)
            handle.wait_launched(self._launch_timeout)
            return handle

        logger.info("Starting %s (%s)", descriptor.name, descriptor.image)
        started_at = time.monotonic()
        try:
            resource = self._launch(descriptor)
        except Exception as exc:  # pylint: disable=broad-except
            failure = ResourceStartupFailure(
                descriptor.name, f"{type(exc).__name__}: {exc}"
            )
            handle.mark_failed(failure)
            logger.error("Failed to start %s: %s", descriptor.name, exc)
            raise failure from exc
        handle.attach(resource)
        logger.info(
            "Launched %s in %.2fs (%s:%s)",
            descriptor.name,
            time.monotonic() - started_at,
            resource.host,
            resource.port,
        )
        return handle

    def _launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        if self._launch_timeout is None:
            return self._backend.launch(descriptor)
        pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"ephemera-launch-{descriptor.name}"
        )
        future = pool.submit(self._backend.launch, descriptor)
        pool.shutdown(wait=False)
        try:
            return future.result(timeout=self._launch_timeout)
        except TimeoutError as exc:
            future.add_done_callback(partial(self._discard_late_launch, descriptor))
            raise TimeoutError(
                f"launch did not finish within {self._launch_timeout:.1f}s"
            ) from exc

    def _discard_late_launch(
        self, descriptor: ResourceDescriptor, future: Future[LaunchedResource]
    ) -> None:
        """Terminate what a timed-out launch brought up after all."""
        if future.exception() is not None:
            return
        if descriptor.lifetime is LifetimePolicy.PERSISTENT:
            logger.warning(
                "Launch of %s finished after its timeout; leaving the persistent "
                "resource for the next run",
                descriptor.name,
            )
            return
        logger.warning(
            "Launch of %s finished after its timeout; terminating it", descriptor.name
        )
        try:
            self._backend.terminate(future.result())
        except Exception as exc:  # pylint: disable=broad-except
            # runs on the launch thread, nobody is left to raise to
            logger.error("Failed to terminate late %s: %s", descriptor.name, exc)

    def stop(self, handle: ResourceHandle) -> None:
        """Stop the resource behind `handle`; a no-op if already STOPPED.

        Persistent resources are left running and only logically stopped.
        If the backend fails to terminate, the handle is still marked
        STOPPED and the backend error propagates.
        """
        if handle.state is LifecycleState.STOPPED:
            return
        if handle.state is LifecycleState.STARTING:
            # a launch may still be in flight; let it settle before tearing down
            handle.wait_settled(self._launch_timeout)
            if handle.state is LifecycleState.STARTING:
                handle.mark_failed(
                    ResourceStartupFailure(handle.name, "stopped before it became ready")
                )
        resource = handle.launched
        if not handle.mark_stopped():
            return
        if resource is None:
            return
        if handle.descriptor.lifetime is LifetimePolicy.PERSISTENT:
            logger.info("Leaving persistent resource %s running", handle.name)
            return
        logger.info("Stopping %s", handle.name)
        self._backend.terminate(resource)

    def stop_all(self) -> None:
        """Stop every handle in reverse start order.

        Every handle is attempted; the first backend error is re-raised
        after the others have been stopped.
        """
        first_error: Exception | None = None
        for handle in reversed(list(self.handles.values())):
            try:
                self.stop(handle)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to stop %s: %s", handle.name, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
