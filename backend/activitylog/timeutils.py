from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .errors import ValidationError

TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}(\s[AP]M)?$")
MINUTES_PER_DAY = 24 * 60
HOURS_QUANTUM = Decimal("0.01")
ZERO_HOURS = Decimal("0.00")


def parse_time_of_day(value: Any) -> int:
    """Return minutes since midnight for a ``H:MM`` or ``H:MM AM|PM`` string."""
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValidationError("invalid time format")
    time_part, _, meridiem = value.partition(" ")
    hour_text, minute_text = time_part.split(":")
    hours = int(hour_text)
    minutes = int(minute_text)
    if meridiem:
        if hours == 12:
            hours = 0 if meridiem == "AM" else 12
        elif meridiem == "PM":
            hours += 12
    if hours > 23 or minutes > 59:
        raise ValidationError("invalid time format")
    return hours * 60 + minutes


def format_time_of_day(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValidationError("invalid time format")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def canonical_time(value: Any) -> str:
    return format_time_of_day(parse_time_of_day(value))


def parse_date(value: Any) -> dt.date:
    """Accept a calendar date or a ``YYYY-MM-DD`` string."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError("invalid date format") from exc
    raise ValidationError("invalid date format")


@dataclass(frozen=True)
class TimeInterval:
    """Half-open wall-clock interval ``[start, end)`` in minutes of the day."""

    start: int
    end: int

    @classmethod
    def from_strings(cls, start: Any, end: Any) -> "TimeInterval":
        interval = cls(parse_time_of_day(start), parse_time_of_day(end))
        if interval.start >= interval.end:
            raise ValidationError("La hora de fin debe ser posterior a la hora de inicio")
        return interval

    def conflicts_with(self, candidate: "TimeInterval") -> bool:
        """Whether ``candidate`` collides with this (existing) interval.

        Touching endpoints do not conflict: ``[09:00, 10:00]`` and
        ``[10:00, 11:00]`` can coexist.
        """
        s, e = self.start, self.end
        cs, ce = candidate.start, candidate.end
        return (s <= cs < e) or (s < ce <= e) or (cs <= s and e <= ce)

    @property
    def minutes(self) -> int:
        return self.end - self.start


def hours_between(start: Optional[str], end: Optional[str]) -> Decimal:
    """Decimal hours between two times of day, rounded half-up to 2 places.

    Missing or unparseable input yields ``0``.
    """
    if not start or not end:
        return ZERO_HOURS
    try:
        start_minutes = parse_time_of_day(start)
        end_minutes = parse_time_of_day(end)
    except ValidationError:
        return ZERO_HOURS
    return (Decimal(end_minutes - start_minutes) / Decimal(60)).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
