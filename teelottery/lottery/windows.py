"""Derive the four lottery preference windows from a day's operating hours."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..errors import InvalidConfiguration
from ..models.enums import ConfigType, TimeWindow
from ..models.teesheet import TeesheetConfig

WINDOW_COUNT = 4

_WINDOW_DISPLAY: dict[TimeWindow, tuple[str, str]] = {
    TimeWindow.MORNING: ("Morning", "Early times"),
    TimeWindow.MIDDAY: ("Midday", "Mid-day times"),
    TimeWindow.AFTERNOON: ("Afternoon", "Later times"),
    TimeWindow.EVENING: ("Evening", "Latest times"),
}


@dataclass(frozen=True)
class WindowInfo:
    """One named sub-range of the operating day.

    Attributes
    ----------
    value : TimeWindow
        Window identifier stored on entries.
    label : str
        Short display label.
    description : str
        One-line description for member-facing pickers.
    start_minutes : int
        Inclusive start, minutes after midnight.
    end_minutes : int
        Exclusive end, minutes after midnight.
    """

    value: TimeWindow
    label: str
    description: str
    start_minutes: int
    end_minutes: int

    @property
    def time_range(self) -> str:
        return f"{format_minutes_12h(self.start_minutes)} - {format_minutes_12h(self.end_minutes)}"

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    def contains(self, minutes: int) -> bool:
        return self.start_minutes <= minutes < self.end_minutes


def parse_time_to_minutes(value: str, *, allow_end_of_day: bool = False) -> int:
    """Parse ``"HH:MM"`` into minutes after midnight.

    Raises
    ------
    InvalidConfiguration
        If ``value`` is not a valid ``HH:MM`` time. ``"24:00"`` is accepted
        only when ``allow_end_of_day`` is set.
    """
    if not isinstance(value, str):
        raise InvalidConfiguration(f"Time must be an HH:MM string, got {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise InvalidConfiguration(f"Time {value!r} is not in HH:MM format")
    hours, minutes = int(parts[0]), int(parts[1])
    if minutes > 59:
        raise InvalidConfiguration(f"Time {value!r} has invalid minutes")
    if hours > 23 and not (allow_end_of_day and hours == 24 and minutes == 0):
        raise InvalidConfiguration(f"Time {value!r} has invalid hours")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Format minutes after midnight as ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_minutes_12h(minutes: int) -> str:
    """Format minutes after midnight as ``h:MM AM``."""
    hours, mins = divmod(minutes, 60)
    hour12 = 12 if hours % 12 == 0 else hours % 12
    period = "AM" if hours < 12 or hours == 24 else "PM"
    return f"{hour12}:{mins:02d} {period}"


def calculate_time_windows(start_time: str, end_time: str) -> list[WindowInfo]:
    """Split ``[start_time, end_time]`` into four contiguous windows.

    Each window is ``floor(total / 4)`` minutes long; leftover minutes go to
    the last window so the windows tile the operating day exactly.

    Raises
    ------
    InvalidConfiguration
        If either time fails to parse or ``start_time`` is not before
        ``end_time``.
    """
    start = parse_time_to_minutes(start_time)
    end = parse_time_to_minutes(end_time, allow_end_of_day=True)
    if start >= end:
        raise InvalidConfiguration(
            f"Operating start {start_time} must be before end {end_time}"
        )

    width = (end - start) // WINDOW_COUNT
    windows: list[WindowInfo] = []
    for index, value in enumerate(TimeWindow):
        window_start = start + width * index
        window_end = end if index == WINDOW_COUNT - 1 else window_start + width
        label, description = _WINDOW_DISPLAY[value]
        windows.append(
            WindowInfo(
                value=value,
                label=label,
                description=description,
                start_minutes=window_start,
                end_minutes=window_end,
            )
        )
    return windows


def is_lottery_available(config: Optional[TeesheetConfig]) -> bool:
    return config is not None and config.config_type == ConfigType.REGULAR


def windows_for_config(config: Optional[TeesheetConfig]) -> list[WindowInfo]:
    """Return the windows for ``config``, or ``[]`` when the lottery is off.

    Custom (irregular) layouts have no lottery; that is not an error.
    """
    if not is_lottery_available(config):
        return []
    assert config is not None
    if config.start_time is None or config.end_time is None:
        raise InvalidConfiguration(
            f"Regular teesheet config {config.id} is missing operating hours"
        )
    return calculate_time_windows(config.start_time, config.end_time)


def window_for_minutes(
    windows: Sequence[WindowInfo], minutes: int
) -> Optional[TimeWindow]:
    """Return the window containing ``minutes``.

    The closing minute of the day belongs to the last window.
    """
    for window in windows:
        if window.contains(minutes):
            return window.value
    if windows and minutes == windows[-1].end_minutes:
        return windows[-1].value
    return None


__all__ = [
    "WINDOW_COUNT",
    "WindowInfo",
    "calculate_time_windows",
    "format_minutes",
    "format_minutes_12h",
    "is_lottery_available",
    "parse_time_to_minutes",
    "window_for_minutes",
    "windows_for_config",
]
