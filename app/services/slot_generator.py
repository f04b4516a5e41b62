"""Recurring doctor schedules and slot expansion.

Everything in this module is pure: no database access, no clock. Callers
persist the generated intervals.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import IntFlag


class Weekday(IntFlag):
    """Working days as a bitmask, bit 0 is Monday."""

    MONDAY = 1 << 0
    TUESDAY = 1 << 1
    WEDNESDAY = 1 << 2
    THURSDAY = 1 << 3
    FRIDAY = 1 << 4
    SATURDAY = 1 << 5
    SUNDAY = 1 << 6

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Return the flag for the weekday of ``day``."""
        return cls(1 << day.weekday())

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "Weekday":
        """Build a mask from day names such as ``["monday", "Friday"]``."""
        mask = cls(0)
        for name in names:
            try:
                mask |= cls[name.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown weekday: {name!r}") from None
        return mask

    def to_names(self) -> list[str]:
        """Lowercase day names in calendar order."""
        return [day.name.lower() for day in WEEK if day in self]


WEEK: tuple[Weekday, ...] = tuple(Weekday(1 << i) for i in range(7))
WEEKDAY_NAMES: tuple[str, ...] = tuple(day.name.lower() for day in WEEK)

WORKING_WEEK = (
    Weekday.MONDAY | Weekday.TUESDAY | Weekday.WEDNESDAY | Weekday.THURSDAY | Weekday.FRIDAY
)


@dataclass(frozen=True)
class DoctorSchedule:
    """A doctor's recurring weekly availability."""

    working_days: Weekday
    start_time: time
    end_time: time
    slot_duration_minutes: int

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValueError("Schedule start time must be before end time")
        if self.slot_duration_minutes <= 0:
            raise ValueError("Slot duration must be positive")
        if self.slot_duration > self.working_span:
            raise ValueError("Slot duration exceeds the working day")

    @property
    def slot_duration(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)

    @property
    def working_span(self) -> timedelta:
        anchor = date.min
        return datetime.combine(anchor, self.end_time) - datetime.combine(anchor, self.start_time)

    def works_on(self, day: date) -> bool:
        return Weekday.of(day) in self.working_days

    @classmethod
    def from_row(cls, doctor: dict) -> "DoctorSchedule":
        """Build a schedule from a ``doctors`` table row."""
        return cls(
            working_days=Weekday(doctor["working_days"]),
            start_time=doctor["working_start_time"],
            end_time=doctor["working_end_time"],
            slot_duration_minutes=doctor["appointment_duration"],
        )


def generate_for_date(schedule: DoctorSchedule, day: date) -> list[tuple[time, time]]:
    """
    Expand a schedule into the slot intervals of one date.

    Args:
        schedule: Recurring weekly schedule
        day: Calendar date to expand

    Returns:
        Ordered, non-overlapping ``(start, end)`` pairs. Empty when the date is
        not a working day. A trailing interval shorter than the slot duration
        is dropped.
    """
    if not schedule.works_on(day):
        return []

    step = schedule.slot_duration
    cursor = datetime.combine(day, schedule.start_time)
    day_end = datetime.combine(day, schedule.end_time)

    slots: list[tuple[time, time]] = []
    while cursor + step <= day_end:
        slot_end = cursor + step
        slots.append((cursor.time(), slot_end.time()))
        cursor = slot_end
    return slots


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every date in the inclusive range."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
