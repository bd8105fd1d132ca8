"""Clock port.

Code under test asks a `Clock` for the current instant instead of calling
`datetime.now()`, so tests can substitute a virtual clock.
"""

from __future__ import annotations

import abc
from datetime import date, datetime

# pylint: disable=too-few-public-methods


class Clock(abc.ABC):
    """Source of the current UTC instant."""

    @abc.abstractmethod
    def now(self) -> datetime:
        """Return the current instant as a timezone-aware UTC datetime."""

    def today(self) -> date:
        """Return the current UTC date."""
        return self.now().date()
