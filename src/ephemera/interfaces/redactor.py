"""Interfaces for redacting credentials before they reach logs or terminals.

Connection URLs and container environments carry passwords. Everything the
orchestration layer logs about an endpoint goes through a `Redactor` first.
"""

from __future__ import annotations

import abc
from collections.abc import Mapping
from enum import Enum


class RedactorMode(Enum):
    """Enumeration for redactor modes.

    Modes:
    - LENIENT: redact passwords/tokens but keep usernames visible.
    - STRICT: redact passwords/tokens and also usernames.
    """

    LENIENT = "lenient"
    STRICT = "strict"


class Redactor(abc.ABC):
    """Interface for sanitizing credentials in URLs and environment maps."""

    _mode: RedactorMode

    @abc.abstractmethod
    def sanitize_url(self, raw_url: str) -> str:
        """Return a display-safe connection URL.

        Args:
            raw_url: Raw connection URL (database, redis, amqp, ...).

        Returns:
            The URL with credentials redacted.
        """

    @abc.abstractmethod
    def sanitize_environment(self, environment: Mapping[str, str]) -> dict[str, str]:
        """Return a copy of a container environment with secret values masked."""

    @property
    def mode(self) -> RedactorMode:
        """Return the redaction mode."""
        return self._mode
