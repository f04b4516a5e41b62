"""Wall-clock source used by booking policy checks."""

from datetime import UTC, date, datetime, time, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from app.config import settings


class Clock:
    """Source of the current time.

    Services take a clock instead of calling ``datetime.now`` so that
    cancellation windows and refund policy can be evaluated against a fixed
    instant in tests.
    """

    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""
        return datetime.now(UTC)


system_clock = Clock()


def get_clock() -> Clock:
    """Dependency returning the process-wide clock."""
    return system_clock


@lru_cache
def clinic_timezone() -> tzinfo:
    """Timezone in which slot dates and times are expressed."""
    name = settings.clinic_timezone
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def slot_datetime(day: date, at: time) -> datetime:
    """Aware datetime of a slot date/time in the clinic timezone."""
    return datetime.combine(day, at, tzinfo=clinic_timezone())


def clinic_now(clock: Clock) -> datetime:
    """Current time of ``clock`` expressed in the clinic timezone."""
    return clock.now().astimezone(clinic_timezone())
