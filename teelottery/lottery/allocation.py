"""Pure slot-matching engine for one lottery date.

Nothing in this module touches the database. :func:`allocate` takes plain
value objects and returns an immutable :class:`Assignment`, so previews can
be recomputed as often as needed and always agree with each other.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..errors import InvalidConfiguration, InvalidWindow, ValidationError
from ..models.enums import LotteryEntryStatus, TimeWindow
from ..models.lottery import LotteryEntry, LotteryGroup
from .scoring import PriorityKey, ProfileSnapshot, priority_key
from .windows import (
    WindowInfo,
    format_minutes,
    parse_time_to_minutes,
    window_for_minutes,
)

logger = logging.getLogger(__name__)


class UnitKind(str, enum.Enum):
    ENTRY = "entry"
    GROUP = "group"


class WindowMatch(str, enum.Enum):
    """Which of the unit's requested windows the placement landed in."""

    PREFERRED = "PREFERRED"
    ALTERNATE = "ALTERNATE"


@dataclass(frozen=True)
class AllocatableUnit:
    """An individual entry or a group, as the allocator sees it.

    Attributes
    ----------
    kind : UnitKind
        Whether the unit came from an entry or a group.
    unit_id : int
        Primary key of the source row.
    member_ids : tuple[int, ...]
        Members placed together; the length is the required capacity.
    preferred_window : TimeWindow
        First-choice window.
    alternate_window : Optional[TimeWindow]
        Fallback window, if any.
    specific_minutes : Optional[int]
        Soft exact-time hint in minutes after midnight.
    submission_seq : int
        Per-date submission order used as the final tiebreak.
    """

    kind: UnitKind
    unit_id: int
    member_ids: tuple[int, ...]
    preferred_window: TimeWindow
    alternate_window: Optional[TimeWindow]
    specific_minutes: Optional[int]
    submission_seq: int

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.unit_id}"

    @property
    def required_capacity(self) -> int:
        return len(self.member_ids)

    def requested_windows(self) -> list[tuple[TimeWindow, WindowMatch]]:
        requested = [(self.preferred_window, WindowMatch.PREFERRED)]
        if self.alternate_window is not None and self.alternate_window != self.preferred_window:
            requested.append((self.alternate_window, WindowMatch.ALTERNATE))
        return requested


@dataclass(frozen=True)
class SlotSnapshot:
    """Capacity view of one time block taken when the inputs were loaded."""

    slot_id: int
    start_minutes: int
    capacity: int
    remaining: int

    @property
    def start_time(self) -> str:
        return format_minutes(self.start_minutes)


@dataclass(frozen=True)
class Placement:
    unit: AllocatableUnit
    slot_id: int
    window: TimeWindow
    match: WindowMatch
    priority: PriorityKey


@dataclass(frozen=True)
class AssignmentStats:
    total_units: int
    assigned_units: int
    unassigned_units: int
    members_assigned: int
    members_unassigned: int
    preferred_matches: int
    alternate_matches: int
    members_by_window: tuple[tuple[TimeWindow, int], ...]

    @property
    def preference_fulfillment_rate(self) -> float:
        if not self.total_units:
            return 0.0
        return self.preferred_matches / self.total_units

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_units": self.total_units,
            "assigned_units": self.assigned_units,
            "unassigned_units": self.unassigned_units,
            "members_assigned": self.members_assigned,
            "members_unassigned": self.members_unassigned,
            "preferred_matches": self.preferred_matches,
            "alternate_matches": self.alternate_matches,
            "preference_fulfillment_rate": self.preference_fulfillment_rate,
            "members_by_window": {w.value: n for w, n in self.members_by_window},
        }


@dataclass(frozen=True)
class AssignmentMove:
    """Administrator correction for one unit; ``slot_id=None`` unassigns it."""

    unit_key: str
    slot_id: Optional[int]


@dataclass(frozen=True)
class Assignment:
    """Tentative result of one allocation run.

    Attributes
    ----------
    placements : tuple[Placement, ...]
        Placed units in the order they were processed.
    unassigned : tuple[AllocatableUnit, ...]
        Units that found no capacity in any requested window, in processing
        order.
    remaining_capacity : tuple[tuple[int, int], ...]
        ``(slot_id, seats_left)`` after every placement, sorted by slot id.
    """

    placements: tuple[Placement, ...]
    unassigned: tuple[AllocatableUnit, ...]
    remaining_capacity: tuple[tuple[int, int], ...]
    _by_key: Mapping[str, Placement] = field(
        default_factory=dict, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_key", {p.unit.key: p for p in self.placements})

    def placement_for(self, unit_key: str) -> Optional[Placement]:
        return self._by_key.get(unit_key)

    def slot_for(self, unit_key: str) -> Optional[int]:
        """Return the slot id assigned to ``unit_key``, or ``None``."""
        placement = self._by_key.get(unit_key)
        return placement.slot_id if placement is not None else None

    @property
    def units(self) -> tuple[AllocatableUnit, ...]:
        return tuple(p.unit for p in self.placements) + self.unassigned

    def mapping(self) -> dict[str, Optional[int]]:
        """Full ``unit key -> slot id or None`` mapping."""
        result: dict[str, Optional[int]] = {p.unit.key: p.slot_id for p in self.placements}
        for unit in self.unassigned:
            result[unit.key] = None
        return result

    def stats(self) -> AssignmentStats:
        by_window: dict[TimeWindow, int] = {window: 0 for window in TimeWindow}
        for placement in self.placements:
            by_window[placement.window] += placement.unit.required_capacity
        return AssignmentStats(
            total_units=len(self.placements) + len(self.unassigned),
            assigned_units=len(self.placements),
            unassigned_units=len(self.unassigned),
            members_assigned=sum(p.unit.required_capacity for p in self.placements),
            members_unassigned=sum(u.required_capacity for u in self.unassigned),
            preferred_matches=sum(
                1 for p in self.placements if p.match == WindowMatch.PREFERRED
            ),
            alternate_matches=sum(
                1 for p in self.placements if p.match == WindowMatch.ALTERNATE
            ),
            members_by_window=tuple(by_window.items()),
        )

    def with_moves(
        self,
        moves: Iterable[AssignmentMove],
        slots: Sequence[SlotSnapshot],
        windows: Sequence[WindowInfo],
        profiles: Mapping[int, ProfileSnapshot],
        fairness: Mapping[int, int],
    ) -> "Assignment":
        """Return a copy with administrator corrections applied.

        Parameters
        ----------
        moves : Iterable[AssignmentMove]
            One move per unit: a target slot, or ``None`` to unassign it.
        slots : Sequence[SlotSnapshot]
            Current time blocks of the date; every placement must use one.
        windows : Sequence[WindowInfo]
            Preference windows of the date.
        profiles, fairness : Mapping[int, ...]
            Same inputs :func:`allocate` ranks by; newly placed units are
            slotted into processing order with them.

        Returns
        -------
        Assignment
            A new assignment; ``self`` is unchanged. Placements stay in
            priority order, so :meth:`FinalizationCoordinator.finalize`
            processes them as it would an allocated result.

        Raises
        ------
        ValidationError
            If a move names a unit outside the assignment or a slot outside
            the date, a unit is moved twice, or a slot would be overfilled.
        InvalidWindow
            If the target slot lies outside the unit's requested windows.
        """
        units = {unit.key: unit for unit in self.units}
        targets: dict[str, Optional[int]] = {}
        for move in moves:
            if move.unit_key not in units:
                raise ValidationError(f"Unit {move.unit_key} is not part of this assignment")
            if move.unit_key in targets:
                raise ValidationError(f"Unit {move.unit_key} is moved more than once")
            targets[move.unit_key] = move.slot_id

        slots_by_id = {slot.slot_id: slot for slot in slots}
        placements = [p for p in self.placements if p.unit.key not in targets]
        unassigned = [u for u in self.unassigned if u.key not in targets]
        for unit_key, slot_id in targets.items():
            unit = units[unit_key]
            if slot_id is None:
                unassigned.append(unit)
                continue
            slot = slots_by_id.get(slot_id)
            if slot is None:
                raise ValidationError(f"Slot {slot_id} is not on the teesheet of this date")
            window = window_for_minutes(windows, slot.start_minutes)
            match = dict(unit.requested_windows()).get(window)
            if window is None or match is None:
                raise InvalidWindow(
                    f"Slot {slot.start_time} is outside the windows requested by {unit_key}"
                )
            placements.append(
                Placement(
                    unit=unit,
                    slot_id=slot_id,
                    window=window,
                    match=match,
                    priority=priority_key(unit.member_ids, unit.submission_seq, profiles, fairness),
                )
            )

        remaining = {slot.slot_id: max(slot.remaining, 0) for slot in slots}
        for placement in placements:
            if placement.slot_id not in remaining:
                raise ValidationError(
                    f"Slot {placement.slot_id} of {placement.unit.key} is not on the "
                    "teesheet of this date"
                )
            remaining[placement.slot_id] -= placement.unit.required_capacity
        overfilled = sorted(slot_id for slot_id, left in remaining.items() if left < 0)
        if overfilled:
            raise ValidationError(f"Slot(s) {overfilled} would exceed their capacity")

        placements.sort(key=lambda p: (p.priority, p.unit.kind.value, p.unit.unit_id))
        logger.info(
            "Applied %d assignment move(s): %d placed, %d unassigned",
            len(targets),
            len(placements),
            len(unassigned),
        )
        return Assignment(
            placements=tuple(placements),
            unassigned=tuple(unassigned),
            remaining_capacity=tuple(sorted(remaining.items())),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "placements": [
                {
                    "unit": placement.unit.key,
                    "member_ids": list(placement.unit.member_ids),
                    "slot_id": placement.slot_id,
                    "window": placement.window.value,
                    "match": placement.match.value,
                }
                for placement in self.placements
            ],
            "unassigned": [
                {"unit": unit.key, "member_ids": list(unit.member_ids)}
                for unit in self.unassigned
            ],
            "stats": self.stats().to_dict(),
        }


def _specific_minutes(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return parse_time_to_minutes(value)
    except InvalidConfiguration:
        # The hint is soft; an unusable one is simply ignored.
        logger.debug("Ignoring unparsable specific time %r", value)
        return None


def build_units(
    entries: Iterable[LotteryEntry],
    groups: Iterable[LotteryGroup],
) -> list[AllocatableUnit]:
    """Convert pending entry and group rows into allocatable units.

    Cancelled and already assigned submissions are skipped.
    """
    units: list[AllocatableUnit] = []
    for entry in entries:
        if entry.status != LotteryEntryStatus.PENDING:
            continue
        units.append(
            AllocatableUnit(
                kind=UnitKind.ENTRY,
                unit_id=entry.id,
                member_ids=(entry.member_id,),
                preferred_window=entry.preferred_window,
                alternate_window=entry.alternate_window,
                specific_minutes=_specific_minutes(entry.specific_time),
                submission_seq=entry.submission_seq,
            )
        )
    for group in groups:
        if group.status != LotteryEntryStatus.PENDING:
            continue
        units.append(
            AllocatableUnit(
                kind=UnitKind.GROUP,
                unit_id=group.id,
                member_ids=group.member_ids,
                preferred_window=group.preferred_window,
                alternate_window=group.alternate_window,
                specific_minutes=_specific_minutes(group.specific_time),
                submission_seq=group.submission_seq,
            )
        )
    return units


def _check_inputs(units: Sequence[AllocatableUnit], slots: Sequence[SlotSnapshot]) -> None:
    seen_keys: set[str] = set()
    seen_members: dict[int, str] = {}
    for unit in units:
        if unit.key in seen_keys:
            raise ValueError(f"Unit {unit.key} was supplied more than once")
        seen_keys.add(unit.key)
        if not unit.member_ids:
            raise ValueError(f"Unit {unit.key} has no members")
        for member_id in unit.member_ids:
            other = seen_members.get(member_id)
            if other is not None:
                raise ValueError(
                    f"Member {member_id} appears in both {other} and {unit.key}"
                )
            seen_members[member_id] = unit.key

    slot_ids = [slot.slot_id for slot in slots]
    if len(set(slot_ids)) != len(slot_ids):
        raise ValueError("Slot ids must be unique")


def _pick_slot(
    candidates: Sequence[SlotSnapshot],
    remaining: Mapping[int, int],
    unit: AllocatableUnit,
) -> Optional[SlotSnapshot]:
    """Choose the slot for ``unit`` among ``candidates`` (sorted by start time)."""
    fitting = [s for s in candidates if remaining[s.slot_id] >= unit.required_capacity]
    if not fitting:
        return None
    if unit.specific_minutes is None:
        return fitting[0]
    target = unit.specific_minutes
    # Closest to the hint; an equal distance goes to the earlier slot.
    return min(fitting, key=lambda s: (abs(s.start_minutes - target), s.start_minutes, s.slot_id))


def allocate(
    units: Sequence[AllocatableUnit],
    slots: Sequence[SlotSnapshot],
    windows: Sequence[WindowInfo],
    profiles: Mapping[int, ProfileSnapshot],
    fairness: Mapping[int, int],
) -> Assignment:
    """Assign units to slots in priority order.

    Parameters
    ----------
    units : Sequence[AllocatableUnit]
        Pending entries and groups for one date. A member may appear in only
        one unit.
    slots : Sequence[SlotSnapshot]
        Time blocks of the date with their remaining capacity.
    windows : Sequence[WindowInfo]
        Preference windows of the date (see
        :func:`~teelottery.lottery.windows.calculate_time_windows`).
    profiles : Mapping[int, ProfileSnapshot]
        Speed profiles keyed by member id; missing members count as neutral.
    fairness : Mapping[int, int]
        Fairness scores keyed by member id; missing members count as zero.

    Returns
    -------
    Assignment
        Placements plus unassigned units. The inputs are not modified and the
        same inputs always yield an equal result.

    Notes
    -----
    Units are processed by fairness (descending), admin adjustment
    (descending) and submission order (ascending). Each unit takes the
    fitting slot of its preferred window closest to its exact-time hint, or
    the earliest one without a hint, then tries its alternate window, and is
    otherwise left unassigned. Groups are never split, and a higher-priority
    unit keeps its slot even when a smaller unit would pack better.

    Raises
    ------
    ValueError
        If a unit key, a member or a slot id is duplicated.
    """
    _check_inputs(units, slots)

    slots_by_window: dict[TimeWindow, list[SlotSnapshot]] = {window: [] for window in TimeWindow}
    for slot in sorted(slots, key=lambda s: (s.start_minutes, s.slot_id)):
        window = window_for_minutes(windows, slot.start_minutes)
        if window is None:
            logger.debug("Slot %s at %s lies outside every window", slot.slot_id, slot.start_time)
            continue
        slots_by_window[window].append(slot)

    remaining: dict[int, int] = {slot.slot_id: max(slot.remaining, 0) for slot in slots}

    ranked = sorted(
        ((priority_key(u.member_ids, u.submission_seq, profiles, fairness), u) for u in units),
        key=lambda pair: (pair[0], pair[1].kind.value, pair[1].unit_id),
    )

    placements: list[Placement] = []
    unassigned: list[AllocatableUnit] = []
    for key, unit in ranked:
        placement: Optional[Placement] = None
        for window, match in unit.requested_windows():
            slot = _pick_slot(slots_by_window[window], remaining, unit)
            if slot is not None:
                remaining[slot.slot_id] -= unit.required_capacity
                placement = Placement(
                    unit=unit, slot_id=slot.slot_id, window=window, match=match, priority=key
                )
                break
        if placement is None:
            logger.debug("Unit %s left unassigned", unit.key)
            unassigned.append(unit)
        else:
            logger.debug(
                "Unit %s placed in slot %s (%s)", unit.key, placement.slot_id, placement.match.value
            )
            placements.append(placement)

    assignment = Assignment(
        placements=tuple(placements),
        unassigned=tuple(unassigned),
        remaining_capacity=tuple(sorted(remaining.items())),
    )
    logger.info(
        "Allocated %d of %d units across %d slots",
        len(placements),
        len(units),
        len(slots),
    )
    return assignment


def preview_stats(
    assignment: Assignment, slots: Sequence[SlotSnapshot]
) -> dict[str, Any]:
    """Summarize an assignment for a review screen.

    Adds seat utilization on top of :meth:`Assignment.stats`: how many seats
    were open before the run and how many the assignment fills.
    """
    summary = assignment.stats().to_dict()
    seats_open = sum(max(slot.remaining, 0) for slot in slots)
    seats_left = sum(left for _, left in assignment.remaining_capacity)
    summary["seats_open"] = seats_open
    summary["seats_filled"] = seats_open - seats_left
    summary["slots_touched"] = len({p.slot_id for p in assignment.placements})
    return summary


__all__ = [
    "AllocatableUnit",
    "Assignment",
    "AssignmentMove",
    "AssignmentStats",
    "Placement",
    "SlotSnapshot",
    "UnitKind",
    "WindowMatch",
    "allocate",
    "build_units",
    "preview_stats",
]
