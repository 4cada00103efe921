"""Priority ordering, speed tiers and fairness score transitions."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ..config import SpeedTierThresholds
from ..models.enums import SpeedTier


@dataclass(frozen=True)
class ProfileSnapshot:
    """Read-only view of the profile fields the allocator consumes.

    Attributes
    ----------
    member_id : int
        Member the snapshot belongs to.
    speed_tier : SpeedTier
        Informational pace classification; never affects ordering.
    priority_adjustment : int
        Administrator adjustment in [-10, 10].
    """

    member_id: int
    speed_tier: SpeedTier = SpeedTier.AVERAGE
    priority_adjustment: int = 0


@dataclass(frozen=True, order=True)
class PriorityKey:
    """Sort key for allocatable units; smaller sorts first.

    Scores are stored negated so that the natural tuple ordering gives
    fairness descending, then adjustment descending, then submission order
    ascending. ``submission_seq`` is unique per date, which makes the
    ordering strict.
    """

    neg_fairness: int
    neg_adjustment: int
    submission_seq: int

    @property
    def fairness(self) -> int:
        return -self.neg_fairness

    @property
    def adjustment(self) -> int:
        return -self.neg_adjustment


def priority_key(
    member_ids: Sequence[int],
    submission_seq: int,
    profiles: Mapping[int, ProfileSnapshot],
    fairness: Mapping[int, int],
) -> PriorityKey:
    """Build the priority key for a unit made of ``member_ids``.

    A group ranks by its longest-waiting member (highest fairness score)
    and by the sum of its members' admin adjustments. Members without a
    recorded profile or score contribute zero.
    """
    group_fairness = max((fairness.get(member_id, 0) for member_id in member_ids), default=0)
    total_adjustment = sum(
        profiles[member_id].priority_adjustment
        for member_id in member_ids
        if member_id in profiles
    )
    return PriorityKey(
        neg_fairness=-group_fairness,
        neg_adjustment=-total_adjustment,
        submission_seq=submission_seq,
    )


def classify_speed_tier(
    average_minutes: Optional[float],
    thresholds: SpeedTierThresholds,
) -> SpeedTier:
    """Map a rolling average round time onto a :class:`SpeedTier`."""
    if average_minutes is None:
        return SpeedTier.AVERAGE
    if average_minutes <= thresholds.fast_max_minutes:
        return SpeedTier.FAST
    if average_minutes <= thresholds.average_max_minutes:
        return SpeedTier.AVERAGE
    return SpeedTier.SLOW


def rolling_average(previous: Optional[float], count: int, observation: float) -> float:
    """Fold ``observation`` into a mean of ``count`` earlier observations."""
    if previous is None or count <= 0:
        return float(observation)
    return (previous * count + observation) / (count + 1)


class FairnessOutcome(str, enum.Enum):
    """How a member fared in one finalized lottery cycle."""

    PREFERRED = "PREFERRED"
    ALTERNATE = "ALTERNATE"
    UNASSIGNED = "UNASSIGNED"


def next_fairness_score(current: int, outcome: FairnessOutcome) -> int:
    """Return the fairness score after a cycle with ``outcome``.

    Getting the preferred window clears the score, the alternate window
    takes one step back, and going unassigned adds one.
    """
    if outcome == FairnessOutcome.PREFERRED:
        return 0
    if outcome == FairnessOutcome.ALTERNATE:
        return max(current - 1, 0)
    return current + 1


__all__ = [
    "FairnessOutcome",
    "PriorityKey",
    "ProfileSnapshot",
    "classify_speed_tier",
    "next_fairness_score",
    "priority_key",
    "rolling_average",
]
