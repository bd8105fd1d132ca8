"""Virtual clock for deterministic time-dependent tests.

The system under test depends on the `Clock` port. In production it gets a
`SystemClock`; in tests it gets a `TimeController` that only moves when test
setup code moves it, so several reads within one test observe the same
instant unless the test advances time explicitly.

One `TimeController` belongs to one test. Sharing an instance between tests
that run concurrently lets one test's `advance` leak into another's
assertions, which is why `ScopeCoordinator.test_context` builds a fresh one
for every test.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from ephemera import config
from ephemera.domain.errors import TimeControllerMisuse
from ephemera.interfaces.clock import Clock

logger = logging.getLogger(__name__)

ZERO = timedelta(0)


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise TimeControllerMisuse(
            f"Virtual clock requires a timezone-aware instant, got naive {instant!r}"
        )
    return instant.astimezone(timezone.utc)


class TimeController(Clock):
    """Settable, advanceable clock.

    Args:
        anchor: Initial instant (timezone-aware). Defaults to the configured
            anchor (`EPHEMERA_TIME_ANCHOR`, else 2024-01-01T00:00:00Z).

    Raises:
        TimeControllerMisuse: for naive datetimes, negative advances, and
            moving time backwards after it has been read.
    """

    def __init__(self, anchor: datetime | None = None) -> None:
        self._lock = threading.Lock()
        self._anchor = _as_utc(anchor) if anchor is not None else config.get_time_anchor()
        self._now = self._anchor
        self._observed: datetime | None = None

    def __repr__(self) -> str:
        return f"TimeController(now={self._now.isoformat()})"

    @property
    def anchor(self) -> datetime:
        """The instant `reset()` returns to."""
        return self._anchor

    @property
    def observed(self) -> datetime | None:
        """The latest instant handed out by `now()` since the last reset."""
        with self._lock:
            return self._observed

    def now(self) -> datetime:
        with self._lock:
            self._observed = self._now
            return self._now

    def set_now(self, instant: datetime) -> None:
        """Jump to `instant`.

        Jumping forward is always allowed. Jumping backwards is only allowed
        before anything has read the clock (or after `reset`): otherwise code
        that already observed a later time would see time run backwards.
        """
        target = _as_utc(instant)
        with self._lock:
            if self._observed is not None and target < self._observed:
                raise TimeControllerMisuse(
                    f"Cannot set the clock to {target.isoformat()}: "
                    f"{self._observed.isoformat()} has already been observed"
                )
            self._now = target
        logger.debug("Virtual clock set to %s", target.isoformat())

    def advance(self, duration: timedelta) -> datetime:
        """Move time forward by `duration` and return the new instant."""
        if duration < ZERO:
            raise TimeControllerMisuse(
                f"Cannot advance the clock by a negative duration ({duration})"
            )
        with self._lock:
            self._now = self._now + duration
            now = self._now
        logger.debug("Virtual clock advanced by %s to %s", duration, now.isoformat())
        return now

    def reset(self, anchor: datetime | None = None) -> None:
        """Return to the anchor (optionally a new one) and forget observations."""
        with self._lock:
            if anchor is not None:
                self._anchor = _as_utc(anchor)
            self._now = self._anchor
            self._observed = None
