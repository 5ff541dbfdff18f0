"""Appointment time grid and local wall-clock timestamps.

Appointments are booked on a fixed 12-hour grid (AM/PM) and stored as a
local timestamp string built by direct concatenation. No timezone is ever
applied: the stored hour and minute are exactly the ones the user picked,
whatever the machine's TZ setting.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Tuple, Union

from clinica import config

TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')
PERIODS = ("AM", "PM")


@dataclass(frozen=True)
class TimeSlot:
    """One selectable grid entry, e.g. value='02:30', period='PM'."""
    value: str
    period: str

    @property
    def label(self) -> str:
        return f"{self.value} {self.period}"


def to_12_hour(hour: int, minute: int) -> Tuple[str, str]:
    """Convert 24h wall-clock to ('hh:mm', 'AM'|'PM')."""
    period = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12
    if display_hour == 0:
        display_hour = 12
    return f"{display_hour:02d}:{minute:02d}", period


def to_24_hour(time_str: str, period: str) -> Tuple[int, int]:
    """
    Convert a 12-hour time plus AM/PM period to 24-hour (hour, minute).

    12:xx AM is 00:xx, 12:xx PM stays 12:xx.

    Raises:
        ValueError: If the time or the period is malformed
    """
    match = TIME_PATTERN.match(time_str.strip()) if time_str else None
    if not match:
        raise ValueError(f"Invalid time: {time_str!r}")
    if period not in PERIODS:
        raise ValueError(f"Invalid period: {period!r}")

    hour, minute = int(match.group(1)), int(match.group(2))
    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        raise ValueError(f"Invalid time: {time_str!r}")

    if period == "PM" and hour != 12:
        hour += 12
    elif period == "AM" and hour == 12:
        hour = 0
    return hour, minute


def time_grid(
    start_time: str = config.APPOINTMENT_HOURS["start_time"],
    end_time: str = config.APPOINTMENT_HOURS["end_time"],
    step_minutes: int = config.APPOINTMENT_HOURS["slot_duration_minutes"]
) -> List[TimeSlot]:
    """
    Build the selectable appointment times, start and end inclusive.

    Args:
        start_time: First slot, 24h HH:MM
        end_time: Last slot, 24h HH:MM
        step_minutes: Grid spacing

    Returns:
        Slots in chronological order
    """
    start = datetime.strptime(start_time, "%H:%M")
    end = datetime.strptime(end_time, "%H:%M")
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute

    slots = []
    for total in range(start_minutes, end_minutes + 1, step_minutes):
        value, period = to_12_hour(total // 60, total % 60)
        slots.append(TimeSlot(value=value, period=period))
    return slots


def is_on_grid(time_str: str, period: str) -> bool:
    """Check a (time, period) pair against the configured grid."""
    return TimeSlot(value=time_str, period=period) in set(time_grid())


def build_local_timestamp(day: Union[date, str], time_str: str, period: str) -> str:
    """
    Build 'YYYY-MM-DDTHH:MM:00' from a calendar day and a 12h time.

    The string is concatenated, never derived from an aware datetime.
    """
    if isinstance(day, date):
        day = day.isoformat()
    hour, minute = to_24_hour(time_str, period)
    return f"{day}T{hour:02d}:{minute:02d}:00"


def parse_local_timestamp(value: str) -> datetime:
    """
    Parse a stored fecha_hora into a naive wall-clock datetime.

    A trailing 'Z' or offset is dropped without conversion: '10:30Z' is
    10:30 on the clinic's wall clock.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1]
    parsed = datetime.fromisoformat(text)
    return parsed.replace(tzinfo=None)


def split_local_timestamp(value: str) -> Tuple[date, str, str]:
    """Split fecha_hora into (day, 'hh:mm', period) to prefill an edit form."""
    parsed = parse_local_timestamp(value)
    time_str, period = to_12_hour(parsed.hour, parsed.minute)
    return parsed.date(), time_str, period
