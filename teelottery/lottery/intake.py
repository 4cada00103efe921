"""Validation and persistence of lottery entries and groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..context import ClubContext
from ..db.utils import utcnow
from ..errors import (
    DuplicateEntry,
    GroupTooLarge,
    InvalidConfiguration,
    InvalidWindow,
    LotteryClosed,
    UnknownMember,
    ValidationError,
)
from ..models import (
    GroupRoster,
    LotteryDate,
    LotteryDateStatus,
    LotteryEntry,
    LotteryEntryStatus,
    LotteryGroup,
    LotteryGroupMember,
    Member,
    TeesheetConfig,
    TimeWindow,
)
from .loader import load_config_for_date
from .windows import parse_time_to_minutes, windows_for_config

logger = logging.getLogger(__name__)

WindowArg = Union[TimeWindow, str]

Submission = Union[LotteryEntry, LotteryGroup]

INDIVIDUAL = "individual"
GROUP = "group"
GROUP_MEMBER = "group_member"


@dataclass(frozen=True)
class SubmissionLookup:
    """A member's active submission for a date.

    ``kind`` is ``"individual"`` for an own entry, ``"group"`` for a group
    the member leads, ``"group_member"`` for a group someone else leads, and
    ``None`` when the member has not entered.
    """

    kind: Optional[str]
    entry: Optional[LotteryEntry] = None
    group: Optional[LotteryGroup] = None

    @property
    def found(self) -> bool:
        return self.kind is not None


@dataclass(frozen=True)
class _Preferences:
    preferred: TimeWindow
    alternate: Optional[TimeWindow]
    exact_time: Optional[str]


class EntryIntake:
    """Accepts, replaces and cancels lottery submissions for one club."""

    def __init__(self, session: Session, context: ClubContext) -> None:
        self._session = session
        self._context = context

    @property
    def club_id(self) -> str:
        return self._context.club_id

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _require_member(self, member_id: int) -> Member:
        member = Member.get_in_club(self._session, self.club_id, member_id)
        if member is None:
            raise UnknownMember(member_id)
        return member

    @staticmethod
    def _check_open(control: Optional[LotteryDate], lottery_date: date) -> None:
        if control is not None and control.status != LotteryDateStatus.PENDING:
            raise LotteryClosed(
                f"The lottery for {lottery_date} is {control.status.value}; "
                "submissions are closed"
            )

    def _require_open(self, lottery_date: date) -> Optional[LotteryDate]:
        control = LotteryDate.get(self._session, self.club_id, lottery_date)
        self._check_open(control, lottery_date)
        return control

    def _control_for_write(self, lottery_date: date) -> LotteryDate:
        control = self._session.scalar(
            select(LotteryDate)
            .where(
                LotteryDate.club_id == self.club_id,
                LotteryDate.lottery_date == lottery_date,
            )
            .with_for_update()
        )
        if control is None:
            control = LotteryDate.get_or_create(self._session, self.club_id, lottery_date)
        return control

    @staticmethod
    def _parse_window(value: WindowArg, field_name: str) -> TimeWindow:
        try:
            return TimeWindow.parse(value)
        except ValueError as exc:
            raise InvalidWindow(f"{field_name}: {exc}") from exc

    def _check_preferences(
        self,
        config: TeesheetConfig,
        preferred: WindowArg,
        alternate: Optional[WindowArg],
        exact_time: Optional[str],
    ) -> _Preferences:
        windows_for_config(config)
        preferred_window = self._parse_window(preferred, "preferred_window")
        alternate_window = (
            self._parse_window(alternate, "alternate_window") if alternate is not None else None
        )
        if alternate_window is not None and alternate_window == preferred_window:
            raise InvalidWindow("The alternate window must differ from the preferred window")

        normalized_time: Optional[str] = None
        if exact_time:
            try:
                minutes = parse_time_to_minutes(exact_time)
            except InvalidConfiguration as exc:
                raise InvalidWindow(str(exc)) from exc
            opens = parse_time_to_minutes(config.start_time)
            closes = parse_time_to_minutes(config.end_time, allow_end_of_day=True)
            if not opens <= minutes < closes:
                raise InvalidWindow(
                    f"Exact time {exact_time} is outside operating hours "
                    f"{config.start_time}-{config.end_time}"
                )
            normalized_time = f"{minutes // 60:02d}:{minutes % 60:02d}"
        return _Preferences(preferred_window, alternate_window, normalized_time)

    def _active_entries(
        self, member_ids: Iterable[int], lottery_date: date
    ) -> list[LotteryEntry]:
        return list(
            self._session.scalars(
                select(LotteryEntry).where(
                    LotteryEntry.club_id == self.club_id,
                    LotteryEntry.lottery_date == lottery_date,
                    LotteryEntry.member_id.in_(list(member_ids)),
                    LotteryEntry.status != LotteryEntryStatus.CANCELLED,
                )
            ).all()
        )

    def _active_groups(
        self, member_ids: Iterable[int], lottery_date: date
    ) -> list[LotteryGroup]:
        return list(
            self._session.scalars(
                select(LotteryGroup)
                .join(LotteryGroupMember, LotteryGroupMember.group_id == LotteryGroup.id)
                .options(selectinload(LotteryGroup.members))
                .where(
                    LotteryGroup.club_id == self.club_id,
                    LotteryGroup.lottery_date == lottery_date,
                    LotteryGroupMember.member_id.in_(list(member_ids)),
                    LotteryGroup.status != LotteryEntryStatus.CANCELLED,
                )
                .distinct()
            ).all()
        )

    def _find_conflicts(
        self, submitter_id: int, member_ids: tuple[int, ...], lottery_date: date
    ) -> list[Union[LotteryEntry, LotteryGroup]]:
        """Return the submitter's replaceable submissions, or raise.

        Only a PENDING entry of the submitter or a PENDING group they lead may
        be replaced. Any other active submission touching ``member_ids`` is a
        duplicate.
        """
        replaceable: list[Union[LotteryEntry, LotteryGroup]] = []
        blocked: set[int] = set()
        for entry in self._active_entries(member_ids, lottery_date):
            if entry.member_id == submitter_id and entry.status == LotteryEntryStatus.PENDING:
                replaceable.append(entry)
            else:
                blocked.add(entry.member_id)
        for group in self._active_groups(member_ids, lottery_date):
            if group.leader_id == submitter_id and group.status == LotteryEntryStatus.PENDING:
                replaceable.append(group)
            else:
                blocked.update(m for m in group.member_ids if m in member_ids)
        if blocked:
            raise DuplicateEntry(sorted(blocked), lottery_date)
        return replaceable

    @staticmethod
    def _build_roster(leader_id: int, member_ids: Iterable[int]) -> GroupRoster:
        others = [m for m in member_ids if m != leader_id]
        if len(set(others)) != len(others):
            raise ValidationError("A member can only appear once in a group")
        if not others:
            raise ValidationError("A group needs at least one member besides the leader")
        return GroupRoster.build(leader_id, others)

    def _replace(
        self, previous: list[Union[LotteryEntry, LotteryGroup]], lottery_date: date
    ) -> None:
        for submission in previous:
            submission.transition_to(LotteryEntryStatus.CANCELLED)
            logger.info(
                "Replaced %s %s for %s", type(submission).__name__, submission.id, lottery_date
            )
        if previous:
            # The partial unique index only ignores rows already written as cancelled.
            self._session.flush()

    def _write_submission(
        self,
        submitter_id: int,
        member_ids: tuple[int, ...],
        lottery_date: date,
        build: Callable[[int], Submission],
    ) -> Submission:
        """Lock the date, re-check it, resolve conflicts and insert ``build(seq)``.

        The control row is locked before the duplicate scan so concurrent
        submissions touching the same member serialize on it. Runs in a
        savepoint; a rejected submission leaves no control row behind.
        """
        with self._session.begin_nested():
            control = self._control_for_write(lottery_date)
            self._check_open(control, lottery_date)
            previous = self._find_conflicts(submitter_id, member_ids, lottery_date)
            self._replace(previous, lottery_date)
            submission = build(control.allocate_submission_seq())
            self._session.add(submission)
            self._session.flush()
        return submission

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def submit_entry(
        self,
        member_id: int,
        lottery_date: date,
        preferred: WindowArg,
        alternate: Optional[WindowArg] = None,
        exact_time: Optional[str] = None,
    ) -> LotteryEntry:
        """Record an individual entry for ``member_id``.

        A pending entry or led group of the same member for the same date is
        cancelled and replaced.

        Returns
        -------
        LotteryEntry
            The new ``PENDING`` entry, flushed so ``id`` is populated.

        Raises
        ------
        UnknownMember, LotteryClosed, LotteryUnavailable, InvalidWindow, DuplicateEntry
            Validation failures; nothing is written.
        """
        member = self._require_member(member_id)
        self._require_open(lottery_date)
        _, config = load_config_for_date(self._session, self.club_id, lottery_date)
        prefs = self._check_preferences(config, preferred, alternate, exact_time)
        now = utcnow()
        entry = self._write_submission(
            member_id,
            (member_id,),
            lottery_date,
            lambda seq: LotteryEntry(
                club_id=self.club_id,
                member_id=member_id,
                lottery_date=lottery_date,
                preferred_window=prefs.preferred,
                alternate_window=prefs.alternate,
                specific_time=prefs.exact_time,
                member_class=member.member_class,
                status=LotteryEntryStatus.PENDING,
                submission_seq=seq,
                submitted_at=now,
            ),
        )
        logger.info(
            "Entry %s submitted by member %s for %s (seq %s)",
            entry.id,
            member_id,
            lottery_date,
            entry.submission_seq,
        )
        return entry

    def submit_group(
        self,
        leader_id: int,
        lottery_date: date,
        member_ids: Iterable[int],
        preferred: WindowArg,
        alternate: Optional[WindowArg] = None,
        exact_time: Optional[str] = None,
    ) -> LotteryGroup:
        """Record a group submission led by ``leader_id``.

        ``member_ids`` may include or omit the leader; the stored roster
        always starts with the leader.

        Raises
        ------
        ValidationError
            If a member is listed twice or the leader is alone.
        GroupTooLarge
            If the roster exceeds the date's per-block capacity.
        UnknownMember, LotteryClosed, LotteryUnavailable, InvalidWindow, DuplicateEntry
            Other validation failures; nothing is written.
        """
        roster = self._build_roster(leader_id, member_ids)

        leader = self._require_member(leader_id)
        for member_id in roster.member_ids[1:]:
            self._require_member(member_id)
        self._require_open(lottery_date)
        _, config = load_config_for_date(self._session, self.club_id, lottery_date)
        if len(roster) > config.max_members_per_block:
            raise GroupTooLarge(len(roster), config.max_members_per_block)
        prefs = self._check_preferences(config, preferred, alternate, exact_time)
        now = utcnow()

        def build(seq: int) -> LotteryGroup:
            group = LotteryGroup(
                club_id=self.club_id,
                lottery_date=lottery_date,
                preferred_window=prefs.preferred,
                alternate_window=prefs.alternate,
                specific_time=prefs.exact_time,
                leader_member_class=leader.member_class,
                status=LotteryEntryStatus.PENDING,
                submission_seq=seq,
                submitted_at=now,
            )
            group.roster = roster
            return group

        group = self._write_submission(leader_id, roster.member_ids, lottery_date, build)
        logger.info(
            "Group %s of %d submitted by member %s for %s (seq %s)",
            group.id,
            len(roster),
            leader_id,
            lottery_date,
            group.submission_seq,
        )
        return group

    # ------------------------------------------------------------------
    # Administrator edits
    # ------------------------------------------------------------------
    @staticmethod
    def _check_editable(control: Optional[LotteryDate], lottery_date: date) -> None:
        if control is not None and control.status == LotteryDateStatus.COMPLETED:
            raise LotteryClosed(f"The lottery for {lottery_date} is already completed")

    def _editable_config(self, lottery_date: date) -> TeesheetConfig:
        control = LotteryDate.get(self._session, self.club_id, lottery_date)
        self._check_editable(control, lottery_date)
        _, config = load_config_for_date(self._session, self.club_id, lottery_date)
        return config

    @staticmethod
    def _require_pending(submission: Submission) -> None:
        if submission.status != LotteryEntryStatus.PENDING:
            raise ValidationError(
                f"{type(submission).__name__} {submission.id} is "
                f"{submission.status.value}; only pending submissions can be edited"
            )

    def _held_elsewhere(self, group: LotteryGroup, member_ids: tuple[int, ...]) -> set[int]:
        held = {entry.member_id for entry in self._active_entries(member_ids, group.lottery_date)}
        for other in self._active_groups(member_ids, group.lottery_date):
            if other.id != group.id:
                held.update(m for m in other.member_ids if m in member_ids)
        return held

    def update_entry(
        self,
        entry_id: int,
        preferred: WindowArg,
        alternate: Optional[WindowArg] = None,
        exact_time: Optional[str] = None,
    ) -> LotteryEntry:
        """Administrator correction of an entry's window preferences.

        Allowed until the date completes, so entries can still be fixed while
        the date is under review. The entry keeps its submission order.
        """
        self._context.require_admin("edit lottery entries")
        entry = self._get_entry(entry_id)
        self._require_pending(entry)
        config = self._editable_config(entry.lottery_date)
        prefs = self._check_preferences(config, preferred, alternate, exact_time)
        entry.preferred_window = prefs.preferred
        entry.alternate_window = prefs.alternate
        entry.specific_time = prefs.exact_time
        entry.updated_at = utcnow()
        self._session.flush()
        logger.info("Entry %s edited by %s", entry_id, self._context.actor_id)
        return entry

    def update_group(
        self,
        group_id: int,
        member_ids: Iterable[int],
        preferred: WindowArg,
        alternate: Optional[WindowArg] = None,
        exact_time: Optional[str] = None,
    ) -> LotteryGroup:
        """Administrator correction of a group's roster and preferences.

        ``member_ids`` must still contain the group's leader. Like
        :meth:`update_entry` this is allowed until the date completes and
        keeps the group's submission order.

        Raises
        ------
        ValidationError
            If the leader was dropped, a member is listed twice, the leader
            would be alone, or the group is no longer pending.
        GroupTooLarge
            If the new roster exceeds the per-block capacity.
        DuplicateEntry
            If an added member already holds another active submission.
        UnknownMember, LotteryClosed, InvalidWindow
            Other validation failures; nothing is written.
        """
        self._context.require_admin("edit lottery groups")
        group = self._get_group(group_id)
        self._require_pending(group)
        requested = list(member_ids)
        if group.leader_id not in requested:
            raise ValidationError("The group leader must stay in the group")
        roster = self._build_roster(group.leader_id, requested)
        for member_id in roster.member_ids[1:]:
            self._require_member(member_id)
        config = self._editable_config(group.lottery_date)
        if len(roster) > config.max_members_per_block:
            raise GroupTooLarge(len(roster), config.max_members_per_block)
        prefs = self._check_preferences(config, preferred, alternate, exact_time)

        with self._session.begin_nested():
            control = self._control_for_write(group.lottery_date)
            self._check_editable(control, group.lottery_date)
            held = self._held_elsewhere(group, roster.member_ids)
            if held:
                raise DuplicateEntry(sorted(held), group.lottery_date)
            if roster != group.roster:
                group.members.clear()
                # Old seats must be gone before positions are reused.
                self._session.flush()
                group.roster = roster
            group.preferred_window = prefs.preferred
            group.alternate_window = prefs.alternate
            group.specific_time = prefs.exact_time
            group.updated_at = utcnow()
            self._session.flush()
        logger.info(
            "Group %s edited by %s (%d members)", group_id, self._context.actor_id, len(roster)
        )
        return group

    # ------------------------------------------------------------------
    # Cancellation and queries
    # ------------------------------------------------------------------
    def _get_entry(self, entry_id: int) -> LotteryEntry:
        entry = self._session.scalar(
            select(LotteryEntry).where(
                LotteryEntry.id == entry_id, LotteryEntry.club_id == self.club_id
            )
        )
        if entry is None:
            raise ValidationError(f"Lottery entry {entry_id} not found")
        return entry

    def _get_group(self, group_id: int) -> LotteryGroup:
        group = self._session.scalar(
            select(LotteryGroup).where(
                LotteryGroup.id == group_id, LotteryGroup.club_id == self.club_id
            )
        )
        if group is None:
            raise ValidationError(f"Lottery group {group_id} not found")
        return group

    def cancel_entry(self, entry_id: int) -> LotteryEntry:
        """Cancel a pending entry while its date is still open.

        Raises
        ------
        LotteryClosed
            If the date is already processing or completed.
        InvalidTransition
            If the entry is no longer pending.
        """
        entry = self._get_entry(entry_id)
        self._require_open(entry.lottery_date)
        entry.transition_to(LotteryEntryStatus.CANCELLED)
        self._session.flush()
        logger.info("Entry %s cancelled", entry_id)
        return entry

    def cancel_group(self, group_id: int) -> LotteryGroup:
        group = self._get_group(group_id)
        self._require_open(group.lottery_date)
        group.transition_to(LotteryEntryStatus.CANCELLED)
        self._session.flush()
        logger.info("Group %s cancelled", group_id)
        return group

    def lookup(self, member_id: int, lottery_date: date) -> SubmissionLookup:
        """Find the member's active entry or group for ``lottery_date``."""
        entries = self._active_entries((member_id,), lottery_date)
        if entries:
            return SubmissionLookup(kind=INDIVIDUAL, entry=entries[0])
        groups = self._active_groups((member_id,), lottery_date)
        if groups:
            group = groups[0]
            kind = GROUP if group.leader_id == member_id else GROUP_MEMBER
            return SubmissionLookup(kind=kind, group=group)
        return SubmissionLookup(kind=None)

    def list_for_date(
        self, lottery_date: date, *, include_cancelled: bool = False
    ) -> tuple[list[LotteryEntry], list[LotteryGroup]]:
        """Entries and groups for the date in submission order."""
        entry_stmt = select(LotteryEntry).where(
            LotteryEntry.club_id == self.club_id,
            LotteryEntry.lottery_date == lottery_date,
        )
        group_stmt = (
            select(LotteryGroup)
            .options(selectinload(LotteryGroup.members))
            .where(
                LotteryGroup.club_id == self.club_id,
                LotteryGroup.lottery_date == lottery_date,
            )
        )
        if not include_cancelled:
            entry_stmt = entry_stmt.where(LotteryEntry.status != LotteryEntryStatus.CANCELLED)
            group_stmt = group_stmt.where(LotteryGroup.status != LotteryEntryStatus.CANCELLED)
        entries = list(self._session.scalars(entry_stmt.order_by(LotteryEntry.submission_seq)).all())
        groups = list(self._session.scalars(group_stmt.order_by(LotteryGroup.submission_seq)).all())
        return entries, groups

    def clear_date(self, lottery_date: date) -> int:
        """Delete every entry and group for a date that has not been processed.

        Intended for administrators resetting test data.

        Returns
        -------
        int
            Number of entries plus groups deleted.
        """
        self._context.require_admin("clear lottery entries")
        self._require_open(lottery_date)
        entries, groups = self.list_for_date(lottery_date, include_cancelled=True)
        for row in (*entries, *groups):
            self._session.delete(row)
        self._session.flush()
        deleted = len(entries) + len(groups)
        logger.warning("Cleared %d lottery submissions for %s", deleted, lottery_date)
        return deleted


__all__ = ["EntryIntake", "SubmissionLookup", "GROUP", "GROUP_MEMBER", "INDIVIDUAL"]
