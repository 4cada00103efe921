"""Turn a reviewed :class:`~teelottery.lottery.allocation.Assignment` into bookings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import ClubContext
from ..db.utils import dt_iso, utcnow
from ..errors import (
    CapacityConflict,
    InvalidTransition,
    PersistenceFailure,
    RestrictionViolationError,
)
from ..models import (
    BookingSource,
    LotteryDate,
    LotteryDateStatus,
    LotteryEntry,
    LotteryEntryStatus,
    LotteryGroup,
    RestrictionOverride,
    Teesheet,
    TimeBlock,
    TimeBlockBooking,
    TimeWindow,
)
from .allocation import AllocatableUnit, Assignment, Placement, UnitKind, WindowMatch
from .loader import load_config_for_date
from .profiles import FairnessChange, SpeedProfileStore
from .restrictions import NullRestrictionChecker, RestrictionChecker, RestrictionViolation
from .scoring import FairnessOutcome

logger = logging.getLogger(__name__)

Submission = Union[LotteryEntry, LotteryGroup]


@dataclass(frozen=True)
class BookedUnit:
    unit_key: str
    member_ids: tuple[int, ...]
    time_block_id: int
    window: TimeWindow
    match: WindowMatch


@dataclass(frozen=True)
class AppliedOverride:
    unit_key: str
    violation: RestrictionViolation
    reason: str


@dataclass
class FinalizationReport:
    """What one :meth:`FinalizationCoordinator.finalize` call did.

    Attributes
    ----------
    lottery_date : date
        Date that was finalized.
    already_completed : bool
        ``True`` when the date had been finalized before; nothing changed.
    booked : list[BookedUnit]
        Units that now hold bookings.
    conflicts : list[CapacityConflict]
        Units demoted because capacity or the one-booking-per-day rule no
        longer allowed their slot.
    blocked : list[RestrictionViolationError]
        Units held back by a booking restriction without an override.
    overrides : list[AppliedOverride]
        Violations forced through by an administrator.
    failures : list[PersistenceFailure]
        Units whose writes failed and were rolled back.
    unassigned : list[str]
        Keys of units the allocator could not place.
    skipped : list[str]
        Keys of units whose submission was no longer pending for this date.
    fairness : list[FairnessChange]
        Fairness score updates, one per member.
    """

    lottery_date: date
    already_completed: bool = False
    booked: list[BookedUnit] = field(default_factory=list)
    conflicts: list[CapacityConflict] = field(default_factory=list)
    blocked: list[RestrictionViolationError] = field(default_factory=list)
    overrides: list[AppliedOverride] = field(default_factory=list)
    failures: list[PersistenceFailure] = field(default_factory=list)
    unassigned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    fairness: list[FairnessChange] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def members_booked(self) -> int:
        return sum(len(b.member_ids) for b in self.booked)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lottery_date": self.lottery_date.isoformat(),
            "already_completed": self.already_completed,
            "completed_at": dt_iso(self.completed_at),
            "booked": [
                {
                    "unit": b.unit_key,
                    "member_ids": list(b.member_ids),
                    "time_block_id": b.time_block_id,
                    "window": b.window.value,
                    "match": b.match.value,
                }
                for b in self.booked
            ],
            "conflicts": [
                {"unit": c.unit_key, "time_block_id": c.time_block_id, "message": c.message}
                for c in self.conflicts
            ],
            "blocked": [
                {
                    "unit": b.unit_key,
                    "violations": [v.message for v in b.violations],
                }
                for b in self.blocked
            ],
            "overrides": [
                {
                    "unit": o.unit_key,
                    "restriction_id": o.violation.restriction_id,
                    "reason": o.reason,
                }
                for o in self.overrides
            ],
            "failures": [{"unit": f.unit_key, "message": f.message} for f in self.failures],
            "unassigned": list(self.unassigned),
            "skipped": list(self.skipped),
            "fairness": [
                {
                    "member_id": c.member_id,
                    "outcome": c.outcome.value,
                    "before": c.before,
                    "after": c.after,
                }
                for c in self.fairness
            ],
        }


_OUTCOME_FOR_MATCH = {
    WindowMatch.PREFERRED: FairnessOutcome.PREFERRED,
    WindowMatch.ALTERNATE: FairnessOutcome.ALTERNATE,
}


class FinalizationCoordinator:
    """Commits a reviewed assignment for one club and date.

    Unlike the other services, :meth:`finalize` is a transaction boundary: it
    commits its result, and on a fatal failure it rolls back, records the
    error on the date and commits that instead.
    """

    def __init__(
        self,
        session: Session,
        context: ClubContext,
        *,
        checker: Optional[RestrictionChecker] = None,
        profiles: Optional[SpeedProfileStore] = None,
    ) -> None:
        self._session = session
        self._context = context
        self._checker: RestrictionChecker = checker or NullRestrictionChecker()
        self._profiles = profiles or SpeedProfileStore(session, context)

    @property
    def club_id(self) -> str:
        return self._context.club_id

    def _control(self, lottery_date: date, *, for_update: bool = False) -> Optional[LotteryDate]:
        stmt = select(LotteryDate).where(
            LotteryDate.club_id == self.club_id,
            LotteryDate.lottery_date == lottery_date,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalar(stmt)

    def start_processing(self, lottery_date: date) -> LotteryDate:
        """Close submissions for the date and open it for finalization.

        Raises
        ------
        PermissionDenied
            If the caller is not an administrator.
        LotteryUnavailable
            If the date has no regular teesheet.
        InvalidTransition
            If the date is not ``PENDING``.
        """
        self._context.require_admin("start lottery processing")
        load_config_for_date(self._session, self.club_id, lottery_date)
        control = self._control(lottery_date, for_update=True)
        if control is None:
            control = LotteryDate.get_or_create(self._session, self.club_id, lottery_date)
        control.transition_to(LotteryDateStatus.PROCESSING)
        self._session.flush()
        logger.info("Lottery for %s (club %s) is now processing", lottery_date, self.club_id)
        return control

    def _time_block(
        self, block_id: int, lottery_date: date, *, for_update: bool = False
    ) -> Optional[TimeBlock]:
        """Load a block of this club's teesheet for ``lottery_date``, or ``None``."""
        stmt = (
            select(TimeBlock)
            .join(Teesheet, Teesheet.id == TimeBlock.teesheet_id)
            .where(
                TimeBlock.id == block_id,
                TimeBlock.club_id == self.club_id,
                Teesheet.play_date == lottery_date,
            )
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalar(stmt)

    def check_restrictions(
        self, lottery_date: date, assignment: Assignment
    ) -> dict[str, list[RestrictionViolation]]:
        """Return the violations each placement would trigger, keyed by unit.

        Nothing is written; units without violations are omitted.
        """
        found: dict[str, list[RestrictionViolation]] = {}
        for placement in assignment.placements:
            block = self._time_block(placement.slot_id, lottery_date)
            if block is None:
                continue
            violations = self._checker.check_violations(placement.unit.member_ids, block)
            if violations:
                found[placement.unit.key] = list(violations)
        logger.debug(
            "%d of %d placements for %s have restriction violations",
            len(found),
            len(assignment.placements),
            lottery_date,
        )
        return found

    def _source(self, unit: AllocatableUnit, lottery_date: date) -> Optional[Submission]:
        model = LotteryEntry if unit.kind == UnitKind.ENTRY else LotteryGroup
        row = self._session.scalar(
            select(model)
            .where(model.id == unit.unit_id, model.club_id == self.club_id)
            .with_for_update()
        )
        if row is None or row.lottery_date != lottery_date:
            return None
        if row.status != LotteryEntryStatus.PENDING:
            return None
        return row

    def _commit_placement(
        self,
        placement: Placement,
        source: Submission,
        lottery_date: date,
        overrides: Mapping[str, str],
        admin_id: Optional[str],
        now: datetime,
    ) -> list[AppliedOverride]:
        """Write one unit's bookings. Runs inside the caller's savepoint."""
        unit = placement.unit
        block = self._time_block(placement.slot_id, lottery_date, for_update=True)
        if block is None:
            raise CapacityConflict(
                unit.key,
                f"time block {placement.slot_id} is not on the teesheet for {lottery_date}",
                time_block_id=placement.slot_id,
            )
        remaining = block.remaining_capacity(self._session)
        if remaining < unit.required_capacity:
            raise CapacityConflict(
                unit.key,
                f"time block {block.start_time} has {remaining} seats left, "
                f"{unit.required_capacity} needed",
                time_block_id=block.id,
            )
        already_booked = TimeBlockBooking.booked_member_ids(
            self._session, self.club_id, lottery_date, unit.member_ids
        )
        if already_booked:
            joined = ", ".join(str(m) for m in sorted(already_booked))
            raise CapacityConflict(
                unit.key,
                f"member(s) {joined} already hold a booking on {lottery_date}",
                time_block_id=block.id,
            )

        applied: list[AppliedOverride] = []
        violations = self._checker.check_violations(unit.member_ids, block)
        if violations:
            reason = (overrides.get(unit.key) or "").strip()
            if not reason or any(not v.can_override for v in violations):
                raise RestrictionViolationError(unit.key, violations)
            for violation in violations:
                self._session.add(
                    RestrictionOverride(
                        club_id=self.club_id,
                        restriction_id=violation.restriction_id,
                        entity_type=unit.kind.value,
                        entity_id=unit.unit_id,
                        member_id=violation.member_id,
                        time_block_id=block.id,
                        lottery_date=lottery_date,
                        violation_message=violation.message,
                        reason=reason,
                        admin_id=admin_id,
                        occurred_at=now,
                    )
                )
                applied.append(AppliedOverride(unit.key, violation, reason))

        for member_id in unit.member_ids:
            self._session.add(
                TimeBlockBooking(
                    club_id=self.club_id,
                    time_block_id=block.id,
                    member_id=member_id,
                    booking_date=lottery_date,
                    booking_time=block.start_time,
                    source=BookingSource.LOTTERY,
                    created_at=now,
                )
            )
        source.mark_assigned(block.id, now)
        self._session.flush()
        return applied

    def finalize(
        self,
        lottery_date: date,
        assignment: Assignment,
        overrides: Optional[Mapping[str, str]] = None,
        admin_id: Optional[str] = None,
    ) -> FinalizationReport:
        """Persist ``assignment`` as bookings and close the date.

        Parameters
        ----------
        lottery_date : date
            Date being finalized; must be ``PROCESSING``.
        assignment : Assignment
            Reviewed output of :func:`~teelottery.lottery.allocation.allocate`.
        overrides : Optional[Mapping[str, str]], default: None
            Admin override reasons keyed by unit key (``"entry:12"``). A unit
            whose placement violates a restriction is only booked when a
            non-empty reason is given here.
        admin_id : Optional[str], default: None
            Acting administrator recorded on audit rows; defaults to the
            context's actor.

        Returns
        -------
        FinalizationReport
            Per-unit outcomes. Calling again after success returns a report
            with ``already_completed`` set and changes nothing.

        Notes
        -----
        Each placement is written in its own savepoint:

        1. Re-read the time block under a row lock and check capacity and the
           one-booking-per-day rule (:class:`CapacityConflict` on failure).
        2. Evaluate restrictions; apply overrides with an audit row.
        3. Insert bookings and mark the submission ``ASSIGNED``.

        A failing unit is rolled back alone and counts as unassigned. Fairness
        scores are then updated for every member of every unit, in member id
        order, and the date moves to ``COMPLETED``. Restriction owners hear
        about applied overrides only once that commit has succeeded.

        Raises
        ------
        PermissionDenied
            If the caller is not an administrator.
        InvalidTransition
            If the date is not ``PROCESSING`` (or ``COMPLETED``).
        PersistenceFailure
            If the date's control record could not be written. Every change
            of the attempt is rolled back and the date returns to ``PENDING``
            with ``last_error`` set.
        """
        self._context.require_admin("finalize the lottery")
        overrides = dict(overrides or {})
        admin_id = admin_id or self._context.actor_id
        report = FinalizationReport(lottery_date=lottery_date)

        control = self._control(lottery_date, for_update=True)
        if control is not None and control.status == LotteryDateStatus.COMPLETED:
            logger.info("Lottery for %s already completed; nothing to do", lottery_date)
            report.already_completed = True
            report.completed_at = control.completed_at
            return report
        if control is None or control.status != LotteryDateStatus.PROCESSING:
            state = control.status.value if control is not None else "not started"
            raise InvalidTransition(
                f"Lottery for {lottery_date} must be PROCESSING to finalize (is {state})"
            )

        now = utcnow()
        outcomes: list[tuple[AllocatableUnit, FairnessOutcome]] = []

        for placement in assignment.placements:
            unit = placement.unit
            source = self._source(unit, lottery_date)
            if source is None:
                logger.warning("Skipping %s: submission is no longer pending", unit.key)
                report.skipped.append(unit.key)
                continue
            try:
                with self._session.begin_nested():
                    applied = self._commit_placement(
                        placement, source, lottery_date, overrides, admin_id, now
                    )
            except CapacityConflict as exc:
                logger.warning("Demoted %s: %s", unit.key, exc.message)
                report.conflicts.append(exc)
                outcomes.append((unit, FairnessOutcome.UNASSIGNED))
            except RestrictionViolationError as exc:
                logger.warning("Blocked %s: %s", unit.key, exc.message)
                report.blocked.append(exc)
                outcomes.append((unit, FairnessOutcome.UNASSIGNED))
            except SQLAlchemyError as exc:
                logger.exception("Persisting %s failed; unit rolled back", unit.key)
                report.failures.append(PersistenceFailure(unit.key, str(exc)))
                outcomes.append((unit, FairnessOutcome.UNASSIGNED))
            else:
                report.overrides.extend(applied)
                report.booked.append(
                    BookedUnit(
                        unit_key=unit.key,
                        member_ids=unit.member_ids,
                        time_block_id=placement.slot_id,
                        window=placement.window,
                        match=placement.match,
                    )
                )
                outcomes.append((unit, _OUTCOME_FOR_MATCH[placement.match]))

        for unit in assignment.unassigned:
            if self._source(unit, lottery_date) is None:
                report.skipped.append(unit.key)
                continue
            report.unassigned.append(unit.key)
            outcomes.append((unit, FairnessOutcome.UNASSIGNED))

        # Fairness rows are locked in member order across every finalizing date.
        member_outcomes = sorted(
            ((member_id, outcome) for unit, outcome in outcomes for member_id in unit.member_ids),
            key=lambda pair: pair[0],
        )
        try:
            for member_id, outcome in member_outcomes:
                report.fairness.append(
                    self._profiles.apply_fairness_outcome(member_id, outcome, now=now)
                )
            control.transition_to(LotteryDateStatus.COMPLETED)
            self._session.flush()
            self._session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Finalizing %s failed; rolling back the attempt", lottery_date)
            self._record_failure(lottery_date, str(exc))
            raise PersistenceFailure(f"date:{lottery_date.isoformat()}", str(exc)) from exc

        for override in report.overrides:
            self._checker.record_override(override.violation, override.reason)

        report.completed_at = now
        logger.info(
            "Finalized %s: %d booked, %d demoted, %d blocked, %d failed, %d unassigned",
            lottery_date,
            len(report.booked),
            len(report.conflicts),
            len(report.blocked),
            len(report.failures),
            len(report.unassigned),
        )
        return report

    def _record_failure(self, lottery_date: date, message: str) -> None:
        """Roll back the attempt and put the date back to ``PENDING``."""
        self._session.rollback()
        control = self._control(lottery_date)
        if control is None:
            return
        if control.status == LotteryDateStatus.PROCESSING:
            control.transition_to(LotteryDateStatus.PENDING)
        control.last_error = message
        self._session.commit()


__all__ = [
    "AppliedOverride",
    "BookedUnit",
    "FinalizationCoordinator",
    "FinalizationReport",
]
