"""
Sleep-aware inactivity time.

A subject who sleeps from 22:00 to 06:00 should not trip a 6-hour survival
alert every night. When sleep exclusion is enabled, survival elapsed time is
the wall-clock time since the last activity minus its overlap with the
configured sleep windows.

A window belongs to the local day it starts on and only applies when that day
is one of ``active_days``. A window whose end is not after its start (e.g.
22:00-06:00) finishes on the following day.
"""

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta, tzinfo

from carealert.domain.models import SleepSettings


def sleep_windows(
    start: datetime, end: datetime, settings: SleepSettings, tz: tzinfo
) -> Iterator[tuple[datetime, datetime]]:
    """Yield UTC sleep windows that may overlap ``[start, end]``."""
    # The previous evening's window can still be open at ``start``
    day = start.astimezone(tz).date() - timedelta(days=1)
    last_day = end.astimezone(tz).date()

    while day <= last_day:
        if day.isoweekday() in settings.active_days:
            end_day = day + timedelta(days=1) if settings.is_overnight else day
            window_start = datetime.combine(day, settings.sleep_start, tzinfo=tz)
            window_end = datetime.combine(end_day, settings.sleep_end, tzinfo=tz)
            yield window_start.astimezone(UTC), window_end.astimezone(UTC)
        day += timedelta(days=1)


def awake_time_between(
    start: datetime, end: datetime, settings: SleepSettings, tz: tzinfo
) -> timedelta:
    """Time between ``start`` and ``end`` that falls outside sleep windows."""
    total = end - start
    if not settings.enabled or total <= timedelta(0):
        return total

    asleep = timedelta(0)
    for window_start, window_end in sleep_windows(start, end, settings, tz):
        overlap = min(end, window_end) - max(start, window_start)
        if overlap > timedelta(0):
            asleep += overlap

    return total - asleep
