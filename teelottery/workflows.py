from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .context import ClubContext
from .db.utils import dt_iso
from .lottery.allocation import Assignment, AssignmentMove, allocate, preview_stats
from .lottery.finalization import FinalizationCoordinator, FinalizationReport
from .lottery.intake import EntryIntake, SubmissionLookup
from .lottery.loader import LotteryInputs, load_lottery_inputs
from .lottery.profiles import (
    KEEP,
    BulkUpdateResult,
    ProfileUpdate,
    SpeedProfileStore,
    StaleListener,
)
from .lottery.restrictions import RestrictionChecker, RestrictionViolation
from .lottery.windows import WindowInfo, windows_for_config
from .models import (
    LotteryDate,
    LotteryDateStatus,
    LotteryEntry,
    LotteryGroup,
    MemberFairnessScore,
    MemberSpeedProfile,
    SpeedTier,
    Teesheet,
    TimeWindow,
)

WindowArg = Union[TimeWindow, str]


@dataclass(frozen=True)
class LotteryPreview:
    """A tentative assignment together with the inputs it was computed from."""

    inputs: LotteryInputs
    assignment: Assignment

    @property
    def stats(self) -> dict[str, Any]:
        return preview_stats(self.assignment, self.inputs.slots)

    def to_dict(self) -> dict[str, Any]:
        data = self.assignment.to_dict()
        data["lottery_date"] = self.inputs.lottery_date.isoformat()
        data["stats"] = self.stats
        return data


def submit_lottery_entry(
    session: Session,
    context: ClubContext,
    member_id: int,
    lottery_date: date,
    preferred_window: WindowArg,
    alternate_window: Optional[WindowArg] = None,
    specific_time: Optional[str] = None,
) -> LotteryEntry:
    """Submit (or replace) an individual lottery entry.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    context : ClubContext
        Club the member belongs to.
    member_id : int
        Member entering the lottery.
    lottery_date : date
        Date the member wants to play.
    preferred_window : TimeWindow | str
        First-choice window, e.g. ``"MORNING"``.
    alternate_window : Optional[TimeWindow | str], default: None
        Fallback window; must differ from ``preferred_window``.
    specific_time : Optional[str], default: None
        Soft ``HH:MM`` hint inside the operating hours.

    Returns
    -------
    LotteryEntry
        The new pending entry.

    Raises
    ------
    ValidationError
        One of ``DuplicateEntry``, ``InvalidWindow``, ``LotteryClosed`` or
        ``UnknownMember``; nothing is written.
    LotteryUnavailable
        If the date has no regular teesheet.
    """
    return EntryIntake(session, context).submit_entry(
        member_id,
        lottery_date,
        preferred_window,
        alternate=alternate_window,
        exact_time=specific_time,
    )


def submit_lottery_group(
    session: Session,
    context: ClubContext,
    leader_id: int,
    lottery_date: date,
    member_ids: Iterable[int],
    preferred_window: WindowArg,
    alternate_window: Optional[WindowArg] = None,
    specific_time: Optional[str] = None,
) -> LotteryGroup:
    """Submit (or replace) a group entry led by ``leader_id``.

    The leader is always part of the group. Raises the same errors as
    :func:`submit_lottery_entry` plus ``GroupTooLarge``.
    """
    return EntryIntake(session, context).submit_group(
        leader_id,
        lottery_date,
        member_ids,
        preferred_window,
        alternate=alternate_window,
        exact_time=specific_time,
    )


def cancel_lottery_submission(
    session: Session,
    context: ClubContext,
    *,
    entry_id: Optional[int] = None,
    group_id: Optional[int] = None,
) -> Union[LotteryEntry, LotteryGroup]:
    """Cancel a pending entry or group; exactly one id must be given."""
    if (entry_id is None) == (group_id is None):
        raise ValueError("Provide exactly one of entry_id or group_id")
    intake = EntryIntake(session, context)
    if entry_id is not None:
        return intake.cancel_entry(entry_id)
    return intake.cancel_group(group_id)


def update_lottery_entry(
    session: Session,
    context: ClubContext,
    entry_id: int,
    preferred_window: WindowArg,
    alternate_window: Optional[WindowArg] = None,
    specific_time: Optional[str] = None,
) -> LotteryEntry:
    """Admin correction of a pending entry's windows; allowed until the date completes."""
    return EntryIntake(session, context).update_entry(
        entry_id, preferred_window, alternate=alternate_window, exact_time=specific_time
    )


def update_lottery_group(
    session: Session,
    context: ClubContext,
    group_id: int,
    member_ids: Iterable[int],
    preferred_window: WindowArg,
    alternate_window: Optional[WindowArg] = None,
    specific_time: Optional[str] = None,
) -> LotteryGroup:
    """Admin correction of a pending group's roster and windows.

    ``member_ids`` must keep the current leader.
    """
    return EntryIntake(session, context).update_group(
        group_id,
        member_ids,
        preferred_window,
        alternate=alternate_window,
        exact_time=specific_time,
    )


def get_member_lottery_entry(
    session: Session, context: ClubContext, member_id: int, lottery_date: date
) -> SubmissionLookup:
    return EntryIntake(session, context).lookup(member_id, lottery_date)


def clear_lottery_entries(session: Session, context: ClubContext, lottery_date: date) -> int:
    """Delete all submissions for an unprocessed date (admin only)."""
    return EntryIntake(session, context).clear_date(lottery_date)


def preview_lottery(
    session: Session, context: ClubContext, lottery_date: date
) -> LotteryPreview:
    """Compute the tentative assignment for a date without writing anything.

    Calling this repeatedly with unchanged data yields equal assignments.
    """
    context.require_admin("preview the lottery")
    inputs = load_lottery_inputs(session, context.club_id, lottery_date)
    assignment = allocate(
        inputs.units, inputs.slots, inputs.windows, inputs.profiles, inputs.fairness
    )
    return LotteryPreview(inputs=inputs, assignment=assignment)


def adjust_lottery_assignment(
    session: Session,
    context: ClubContext,
    lottery_date: date,
    assignment: Assignment,
    moves: Iterable[AssignmentMove],
) -> LotteryPreview:
    """Apply administrator moves to a reviewed assignment.

    Each move places a unit in another block (or unassigns it with
    ``slot_id=None``). The result is checked against the date's current
    teesheet, so it can be passed straight to :func:`finalize_lottery`.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    context : ClubContext
        Administrator context.
    lottery_date : date
        Date the assignment belongs to.
    assignment : Assignment
        Assignment from :func:`preview_lottery` or an earlier adjustment.
    moves : Iterable[AssignmentMove]
        At most one move per unit key.

    Returns
    -------
    LotteryPreview
        The adjusted assignment with fresh inputs and stats.

    Raises
    ------
    ValidationError
        For unknown units or blocks, or a block without room.
    InvalidWindow
        If a block lies outside the windows the unit asked for.
    """
    context.require_admin("adjust the lottery assignment")
    inputs = load_lottery_inputs(session, context.club_id, lottery_date)
    adjusted = assignment.with_moves(
        moves, inputs.slots, inputs.windows, inputs.profiles, inputs.fairness
    )
    return LotteryPreview(inputs=inputs, assignment=adjusted)


def start_lottery_processing(
    session: Session, context: ClubContext, lottery_date: date
) -> LotteryDate:
    return FinalizationCoordinator(session, context).start_processing(lottery_date)


def review_lottery_restrictions(
    session: Session,
    context: ClubContext,
    lottery_date: date,
    assignment: Optional[Assignment] = None,
    *,
    checker: Optional[RestrictionChecker] = None,
) -> dict[str, list[RestrictionViolation]]:
    """List restriction violations of the (given or freshly previewed) assignment."""
    if assignment is None:
        assignment = preview_lottery(session, context, lottery_date).assignment
    coordinator = FinalizationCoordinator(session, context, checker=checker)
    return coordinator.check_restrictions(lottery_date, assignment)


def finalize_lottery(
    session: Session,
    context: ClubContext,
    lottery_date: date,
    assignment: Optional[Assignment] = None,
    *,
    overrides: Optional[Mapping[str, str]] = None,
    checker: Optional[RestrictionChecker] = None,
) -> FinalizationReport:
    """Book the reviewed assignment and complete the date.

    When ``assignment`` is omitted a fresh preview is computed and committed
    as-is. The coordinator commits the session; see
    :meth:`~teelottery.lottery.finalization.FinalizationCoordinator.finalize`.
    """
    context.require_admin("finalize the lottery")
    control = LotteryDate.get(session, context.club_id, lottery_date)
    coordinator = FinalizationCoordinator(session, context, checker=checker)
    if assignment is None:
        if control is not None and control.status == LotteryDateStatus.COMPLETED:
            # Already completed; the coordinator reports it without work.
            assignment = Assignment(placements=(), unassigned=(), remaining_capacity=())
        else:
            assignment = preview_lottery(session, context, lottery_date).assignment
    return coordinator.finalize(
        lottery_date, assignment, overrides=overrides, admin_id=context.actor_id
    )


def get_lottery_windows(
    session: Session, context: ClubContext, lottery_date: date
) -> list[WindowInfo]:
    """Windows members can choose for the date; ``[]`` when there is no lottery."""
    teesheet = Teesheet.get_for_date(session, context.club_id, lottery_date)
    if teesheet is None:
        return []
    return windows_for_config(teesheet.config)


def get_lottery_status(
    session: Session, context: ClubContext, lottery_date: date
) -> dict[str, Any]:
    """Processing state and submission counts for a dashboard."""
    control = LotteryDate.get(session, context.club_id, lottery_date)
    entry_counts = dict(
        session.execute(
            select(LotteryEntry.status, func.count(LotteryEntry.id))
            .where(
                LotteryEntry.club_id == context.club_id,
                LotteryEntry.lottery_date == lottery_date,
            )
            .group_by(LotteryEntry.status)
        ).all()
    )
    group_counts = dict(
        session.execute(
            select(LotteryGroup.status, func.count(LotteryGroup.id))
            .where(
                LotteryGroup.club_id == context.club_id,
                LotteryGroup.lottery_date == lottery_date,
            )
            .group_by(LotteryGroup.status)
        ).all()
    )
    return {
        "lottery_date": lottery_date.isoformat(),
        "lottery_available": bool(get_lottery_windows(session, context, lottery_date)),
        "status": control.status.value if control is not None else "PENDING",
        "processing_started_at": dt_iso(control.processing_started_at) if control else None,
        "completed_at": dt_iso(control.completed_at) if control else None,
        "last_error": control.last_error if control else None,
        "entries": {status.value: count for status, count in entry_counts.items()},
        "groups": {status.value: count for status, count in group_counts.items()},
    }


def get_speed_profile(
    session: Session, context: ClubContext, member_id: int
) -> MemberSpeedProfile:
    return SpeedProfileStore(session, context).get_profile(member_id)


def update_speed_profile(
    session: Session,
    context: ClubContext,
    member_id: int,
    *,
    speed_tier: Optional[SpeedTier] = None,
    priority_adjustment: Optional[int] = None,
    manual_override: Optional[bool] = None,
    notes: Any = KEEP,
) -> MemberSpeedProfile:
    """Admin edit of a member's profile; pass ``notes=None`` to clear notes."""
    context.require_admin("edit speed profiles")
    return SpeedProfileStore(session, context).update_profile(
        member_id,
        speed_tier=speed_tier,
        priority_adjustment=priority_adjustment,
        manual_override=manual_override,
        notes=notes,
    )


def set_priority_adjustment(
    session: Session,
    context: ClubContext,
    member_id: int,
    adjustment: int,
    notes: Optional[str] = None,
) -> MemberSpeedProfile:
    context.require_admin("set priority adjustments")
    return SpeedProfileStore(session, context).set_adjustment(member_id, adjustment, notes)


def bulk_update_speed_profiles(
    session: Session,
    context: ClubContext,
    updates: Iterable[ProfileUpdate],
    *,
    stale_listeners: Sequence[StaleListener] = (),
) -> BulkUpdateResult:
    context.require_admin("edit speed profiles")
    store = SpeedProfileStore(session, context, stale_listeners=stale_listeners)
    return store.bulk_update(updates)


def reset_all_priority_adjustments(
    session: Session,
    context: ClubContext,
    *,
    stale_listeners: Sequence[StaleListener] = (),
) -> BulkUpdateResult:
    context.require_admin("reset priority adjustments")
    store = SpeedProfileStore(session, context, stale_listeners=stale_listeners)
    return store.reset_all_adjustments()


def record_pace_of_play(
    session: Session, context: ClubContext, member_id: int, minutes: float
) -> MemberSpeedProfile:
    """Feed a finished round's duration into the member's speed profile."""
    context.require_admin("record pace of play")
    return SpeedProfileStore(session, context).record_pace_of_play(member_id, minutes)


def get_fairness_scores(
    session: Session,
    context: ClubContext,
    member_ids: Optional[Iterable[int]] = None,
) -> list[MemberFairnessScore]:
    return SpeedProfileStore(session, context).fairness_scores(member_ids)
