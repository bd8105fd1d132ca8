"""Gating tests on resource readiness.

A container that has started is not necessarily accepting requests:
PostgreSQL restarts once during initdb, Redis loads its dataset, a broker
opens its listener late. `ReadinessProbe` polls a `HealthCheck` until the
resource answers or a bounded budget runs out. Running out is fatal for the
resource: its handle moves to FAILED and every dependent test sees the same
`ReadinessTimeout`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from ephemera import config
from ephemera.domain.errors import ReadinessTimeout
from ephemera.domain.lifecycle import LifecycleState

if TYPE_CHECKING:
    from ephemera.interfaces.backend import LaunchedResource
    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)

HealthCheckFn = Callable[["LaunchedResource"], None]


@dataclass(frozen=True)
class ProbeSettings:
    """Retry budget of a readiness probe.

    Attributes:
        attempts: Maximum number of health checks.
        interval: Delay before the second attempt, in seconds.
        backoff: Multiplier applied to the delay after every failed attempt
            (1.0 keeps a fixed interval).
        max_interval: Upper bound for the delay, if any.
        timeout: Overall deadline in seconds, if any. The probe gives up
            when the next full delay would not fit before the deadline.
    """

    attempts: int = config.DEFAULT_PROBE_ATTEMPTS
    interval: float = config.DEFAULT_PROBE_INTERVAL
    backoff: float = config.DEFAULT_PROBE_BACKOFF
    max_interval: float | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")

    @classmethod
    def from_env(cls) -> ProbeSettings:
        """Settings from the EPHEMERA_PROBE_* environment variables."""
        return cls(
            attempts=config.get_probe_attempts(),
            interval=config.get_probe_interval(),
            backoff=config.get_probe_backoff(),
        )

    def delay_after(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        delay = self.interval * (self.backoff ** (attempt - 1))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return max(delay, self.interval)


class ReadinessProbe:
    """Polls health checks within a retry budget.

    Args:
        settings: Default budget; individual calls may override parts of it.
        sleep: Sleep function (injectable for tests).
        monotonic: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        settings: ProbeSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ProbeSettings()
        self._sleep = sleep
        self._monotonic = monotonic

    def poll(
        self,
        check: HealthCheckFn,
        resource: LaunchedResource,
        *,
        name: str = "resource",
        settings: ProbeSettings | None = None,
    ) -> int:
        """Run `check` against `resource` until it passes.

        Args:
            check: Health check callable; raising means "not ready yet".
            resource: Endpoint to check.
            name: Resource name used in logs and errors.
            settings: Budget for this call (defaults to the probe's settings).

        Returns:
            int: Number of attempts it took.

        Raises:
            ReadinessTimeout: when the budget is exhausted.
        """
        settings = settings or self.settings
        started = self._monotonic()
        deadline = None if settings.timeout is None else started + settings.timeout
        last_error: BaseException | None = None
        attempt = 0

        while attempt < settings.attempts:
            attempt += 1
            try:
                check(resource)
            except Exception as exc:  # pylint: disable=broad-except
                last_error = exc
                logger.debug(
                    "%s not ready (attempt %d/%d): %s",
                    name,
                    attempt,
                    settings.attempts,
                    exc,
                )
            else:
                logger.info("%s ready after %d attempt(s)", name, attempt)
                return attempt

            if attempt >= settings.attempts:
                break
            delay = settings.delay_after(attempt)
            if deadline is not None and self._monotonic() + delay > deadline:
                break
            self._sleep(delay)

        elapsed = self._monotonic() - started
        logger.error("%s not ready after %d attempt(s)", name, attempt)
        raise ReadinessTimeout(name, attempt, elapsed, last_error)

    def wait_ready(
        self,
        handle: ResourceHandle,
        check: HealthCheckFn,
        *,
        attempts: int | None = None,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        """Wait until `handle` passes `check`, then mark it READY.

        A READY handle returns immediately; a FAILED handle re-raises its
        recorded failure. On exhaustion the handle is marked FAILED with the
        `ReadinessTimeout` that is raised, so nobody proceeds against a
        half-ready resource.

        Args:
            handle: A launched (STARTING) handle.
            check: Resource-specific health check.
            attempts: Override for the attempt budget.
            interval: Override for the polling interval.
            timeout: Override for the overall deadline.

        Raises:
            ReadinessTimeout: when the budget is exhausted.
        """
        state = handle.state
        if state is LifecycleState.READY:
            return
        if state is LifecycleState.FAILED and handle.error is not None:
            raise handle.error

        overrides = {
            key: value
            for key, value in (
                ("attempts", attempts),
                ("interval", interval),
                ("timeout", timeout),
            )
            if value is not None
        }
        settings = replace(self.settings, **overrides)
        resource = handle.wait_launched()
        try:
            self.poll(check, resource, name=handle.name, settings=settings)
        except ReadinessTimeout as exc:
            handle.mark_failed(exc)
            raise
        handle.mark_ready()
