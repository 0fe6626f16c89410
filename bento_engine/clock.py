"""
Time sources for the bento engine.

Notes
-----
Three things in the engine depend on the current time:

- ``lastModified`` stamps written by the live store, which decide whether a
  published snapshot is newer than local edits;
- stored item ids, which start with the creation time in milliseconds;
- the publish pipeline's snapshot stamp and deployment timeout.

None of them read the wall clock directly. They take a :class:`Clock`, so
tests can pin stamps with :class:`FixedClock` or step through a deployment
wait with :class:`ManualClock`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC; snapshot stamps are always UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class Clock(Protocol):
    """Where the live store and publish pipeline get the current time."""

    def now(self) -> datetime:
        """
        Return the current time.

        Returns
        -------
        datetime
            A timezone-aware datetime. Stamps derived from it are compared
            across the live store and published snapshots.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Wall-clock time in UTC; the default for stores and publishing."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """
    Clock pinned to one instant.

    Every ``lastModified`` stamp and item id prefix written through it is the
    same, which makes staleness comparisons in seeding tests exact.
    """

    fixed_time: datetime

    def now(self) -> datetime:
        return _as_utc(self.fixed_time)


@dataclass(slots=True)
class ManualClock:
    """
    Clock that only moves when told to.

    Polling loops take this clock together with its ``sleep`` method so a test
    can run a five minute deployment wait instantly. ``sleeps`` records the
    requested delays in order.
    """

    current: datetime
    sleeps: list[float] = field(default_factory=list)

    def now(self) -> datetime:
        """Return the current simulated time."""
        return _as_utc(self.current)

    def advance(self, seconds: float) -> None:
        """Move the simulated time forward."""
        self.current = self.current + timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        """Record a sleep and advance the simulated time by the same amount."""
        self.sleeps.append(seconds)
        self.advance(seconds)
