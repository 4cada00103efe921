"""Seam to the booking-restriction subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..models import TimeBlock


@dataclass(frozen=True)
class RestrictionViolation:
    """A rule that would be broken by booking a member onto a time block.

    Attributes
    ----------
    restriction_id : str
        Identifier of the rule in the restriction subsystem.
    restriction_name : str
        Human-readable rule name.
    member_id : Optional[int]
        Offending member, when the rule is member-specific.
    time_block_id : Optional[int]
        Block the check ran against.
    message : str
        Explanation shown to the reviewing administrator.
    can_override : bool
        Whether an administrator may force the booking through.
    """

    restriction_id: str
    restriction_name: str
    member_id: Optional[int]
    time_block_id: Optional[int]
    message: str
    can_override: bool = True


@runtime_checkable
class RestrictionChecker(Protocol):
    def check_violations(
        self, member_ids: Sequence[int], slot: TimeBlock
    ) -> list[RestrictionViolation]:
        ...

    def record_override(self, violation: RestrictionViolation, reason: str) -> None:
        ...


class NullRestrictionChecker:
    """Checker used when no restriction subsystem is wired in."""

    def check_violations(
        self, member_ids: Sequence[int], slot: TimeBlock
    ) -> list[RestrictionViolation]:
        return []

    def record_override(self, violation: RestrictionViolation, reason: str) -> None:
        return None


__all__ = ["NullRestrictionChecker", "RestrictionChecker", "RestrictionViolation"]
