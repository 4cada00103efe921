"""Closed enumerations shared by the lottery models and engine."""

from __future__ import annotations

import enum


class TimeWindow(str, enum.Enum):
    """Coarse preference buckets a member can request, in day order."""

    MORNING = "MORNING"
    MIDDAY = "MIDDAY"
    AFTERNOON = "AFTERNOON"
    EVENING = "EVENING"

    @classmethod
    def parse(cls, value: "TimeWindow | str") -> "TimeWindow":
        """Return the window named by ``value`` (case-insensitive).

        Raises
        ------
        ValueError
            If ``value`` does not name a window.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown time window {value!r}")
        try:
            return cls[value.strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown time window {value!r}") from exc


class ConfigType(str, enum.Enum):
    REGULAR = "REGULAR"
    CUSTOM = "CUSTOM"


class SpeedTier(str, enum.Enum):
    FAST = "FAST"
    AVERAGE = "AVERAGE"
    SLOW = "SLOW"


class BookingSource(str, enum.Enum):
    LOTTERY = "LOTTERY"
    MANUAL = "MANUAL"


class LotteryEntryStatus(str, enum.Enum):
    """Lifecycle of an individual entry or a group submission."""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: "LotteryEntryStatus") -> bool:
        return target in _ENTRY_TRANSITIONS[self]


class LotteryDateStatus(str, enum.Enum):
    """Processing state of one lottery date."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"

    def can_transition_to(self, target: "LotteryDateStatus") -> bool:
        return target in _DATE_TRANSITIONS[self]


_ENTRY_TRANSITIONS: dict[LotteryEntryStatus, frozenset[LotteryEntryStatus]] = {
    LotteryEntryStatus.PENDING: frozenset(
        {LotteryEntryStatus.ASSIGNED, LotteryEntryStatus.CANCELLED}
    ),
    LotteryEntryStatus.ASSIGNED: frozenset(),
    LotteryEntryStatus.CANCELLED: frozenset(),
}

# PROCESSING -> PENDING is the failed-finalization path; COMPLETED is terminal.
_DATE_TRANSITIONS: dict[LotteryDateStatus, frozenset[LotteryDateStatus]] = {
    LotteryDateStatus.PENDING: frozenset({LotteryDateStatus.PROCESSING}),
    LotteryDateStatus.PROCESSING: frozenset(
        {LotteryDateStatus.COMPLETED, LotteryDateStatus.PENDING}
    ),
    LotteryDateStatus.COMPLETED: frozenset(),
}


__all__ = [
    "BookingSource",
    "ConfigType",
    "LotteryDateStatus",
    "LotteryEntryStatus",
    "SpeedTier",
    "TimeWindow",
]
