"""Speed profiles, admin priority adjustments and fairness counters."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import SpeedTierThresholds, load_settings
from ..context import ClubContext
from ..db.utils import utcnow
from ..errors import OutOfRange, UnknownMember, ValidationError
from ..models import Member, MemberFairnessScore, MemberSpeedProfile, SpeedTier
from ..models.profile import MAX_PRIORITY_ADJUSTMENT, MIN_PRIORITY_ADJUSTMENT
from .scoring import (
    FairnessOutcome,
    classify_speed_tier,
    next_fairness_score,
    rolling_average,
)

logger = logging.getLogger(__name__)

MIN_ROUND_MINUTES = 1
MAX_ROUND_MINUTES = 24 * 60

StaleListener = Callable[[Sequence[int]], None]

KEEP = object()


class MemberLockRegistry:
    """Process-wide mutexes keyed by ``(club_id, member_id)``.

    Used together with ``SELECT ... FOR UPDATE`` so two finalizations for
    different dates never interleave read-modify-write cycles on the same
    member's counters.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, int], threading.Lock] = {}
        self._locks_lock = threading.Lock()

    def _get_key_lock(self, key: tuple[str, int]) -> threading.Lock:
        with self._locks_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, club_id: str, member_id: int) -> Iterator[None]:
        lock = self._get_key_lock((club_id, member_id))
        with lock:
            yield

    def clear(self) -> None:
        with self._locks_lock:
            self._locks.clear()


MEMBER_LOCKS = MemberLockRegistry()


@dataclass(frozen=True)
class ProfileUpdate:
    """One item of an admin bulk edit."""

    member_id: int
    priority_adjustment: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class ProfileUpdateOutcome:
    member_id: int
    success: bool
    error: Optional[str] = None


@dataclass
class BulkUpdateResult:
    """Per-item outcome of a batch edit; partial success is normal."""

    results: list[ProfileUpdateOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def errors(self) -> list[str]:
        return [f"Member {r.member_id}: {r.error}" for r in self.results if not r.success]

    @property
    def updated_member_ids(self) -> list[int]:
        return [r.member_id for r in self.results if r.success]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "updated_count": self.updated_count,
            "results": [
                {"member_id": r.member_id, "success": r.success, "error": r.error}
                for r in self.results
            ],
            "errors": self.errors,
        }


@dataclass(frozen=True)
class FairnessChange:
    member_id: int
    outcome: FairnessOutcome
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


def _check_adjustment(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise OutOfRange(
            "priority_adjustment", value, MIN_PRIORITY_ADJUSTMENT, MAX_PRIORITY_ADJUSTMENT
        )
    if not MIN_PRIORITY_ADJUSTMENT <= value <= MAX_PRIORITY_ADJUSTMENT:
        raise OutOfRange(
            "priority_adjustment", value, MIN_PRIORITY_ADJUSTMENT, MAX_PRIORITY_ADJUSTMENT
        )
    return value


class SpeedProfileStore:
    """Reads and writes member speed profiles and fairness scores for one club.

    Every method is scoped to ``context.club_id``. Writes are flushed but not
    committed; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        context: ClubContext,
        *,
        thresholds: Optional[SpeedTierThresholds] = None,
        locks: Optional[MemberLockRegistry] = None,
        stale_listeners: Iterable[StaleListener] = (),
    ) -> None:
        """Bind the store to a session and a club.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session.
        context : ClubContext
            Club whose profiles are read and written.
        thresholds : Optional[SpeedTierThresholds], default: None
            Tier cut-offs; taken from :func:`~teelottery.config.load_settings`
            when omitted.
        locks : Optional[MemberLockRegistry], default: None
            Per-member lock registry; the process-wide one by default.
        stale_listeners : Iterable[StaleListener], default: ()
            Callbacks told which members changed after a bulk edit, so cached
            profile views can be refreshed.
        """
        self._session = session
        self._context = context
        self._thresholds = thresholds or load_settings().speed_tiers
        self._locks = locks or MEMBER_LOCKS
        self._stale_listeners: list[StaleListener] = list(stale_listeners)

    @property
    def club_id(self) -> str:
        return self._context.club_id

    def add_stale_listener(self, listener: StaleListener) -> None:
        self._stale_listeners.append(listener)

    def _notify_stale(self, member_ids: Sequence[int]) -> None:
        if not member_ids:
            return
        for listener in self._stale_listeners:
            listener(list(member_ids))

    def _require_member(self, member_id: int) -> Member:
        member = Member.get_in_club(self._session, self.club_id, member_id)
        if member is None:
            raise UnknownMember(member_id)
        return member

    # ------------------------------------------------------------------
    # Speed profiles
    # ------------------------------------------------------------------
    def _profile_row(self, member_id: int, *, for_update: bool = False) -> Optional[MemberSpeedProfile]:
        stmt = select(MemberSpeedProfile).where(
            MemberSpeedProfile.club_id == self.club_id,
            MemberSpeedProfile.member_id == member_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalar(stmt)

    def _profile_for_write(self, member_id: int) -> MemberSpeedProfile:
        profile = self._profile_row(member_id, for_update=True)
        if profile is None:
            self._require_member(member_id)
            profile = MemberSpeedProfile(member_id=member_id, club_id=self.club_id)
            self._session.add(profile)
        return profile

    def get_profile(self, member_id: int) -> MemberSpeedProfile:
        """Return the stored profile, or an unsaved default one.

        Raises
        ------
        UnknownMember
            If the member does not belong to the club.
        """
        profile = self._profile_row(member_id)
        if profile is not None:
            return profile
        self._require_member(member_id)
        return MemberSpeedProfile(member_id=member_id, club_id=self.club_id)

    def list_profiles(self) -> list[MemberSpeedProfile]:
        return list(
            self._session.scalars(
                select(MemberSpeedProfile)
                .where(MemberSpeedProfile.club_id == self.club_id)
                .order_by(MemberSpeedProfile.member_id)
            ).all()
        )

    def set_adjustment(
        self, member_id: int, delta: int, notes: Optional[str] = None
    ) -> MemberSpeedProfile:
        """Set the admin priority adjustment of ``member_id`` to ``delta``.

        Raises
        ------
        OutOfRange
            If ``delta`` is not an integer in [-10, 10]. Nothing is written.
        UnknownMember
            If the member does not belong to the club.
        """
        value = _check_adjustment(delta)
        with self._locks.hold(self.club_id, member_id):
            profile = self._profile_for_write(member_id)
            profile.admin_priority_adjustment = value
            if notes is not None:
                profile.notes = notes
            profile.updated_at = utcnow()
            self._session.flush()
        logger.info("Priority adjustment for member %s set to %s", member_id, value)
        return profile

    def update_profile(
        self,
        member_id: int,
        *,
        speed_tier: Optional[SpeedTier] = None,
        priority_adjustment: Optional[int] = None,
        manual_override: Optional[bool] = None,
        notes=KEEP,
    ) -> MemberSpeedProfile:
        """Apply an admin edit; only the supplied fields change.

        Setting ``speed_tier`` without ``manual_override`` switches the
        override on, so later pace observations keep the chosen tier. Pass
        ``notes=None`` to clear the notes.
        """
        if priority_adjustment is not None:
            _check_adjustment(priority_adjustment)
        if speed_tier is not None and not isinstance(speed_tier, SpeedTier):
            try:
                speed_tier = SpeedTier(str(speed_tier).upper())
            except ValueError as exc:
                raise ValidationError(f"Unknown speed tier {speed_tier!r}") from exc

        with self._locks.hold(self.club_id, member_id):
            profile = self._profile_for_write(member_id)
            if speed_tier is not None:
                profile.speed_tier = speed_tier
                if manual_override is None:
                    manual_override = True
            if manual_override is not None:
                profile.manual_override = manual_override
            if priority_adjustment is not None:
                profile.admin_priority_adjustment = priority_adjustment
            if notes is not KEEP:
                profile.notes = notes
            profile.updated_at = utcnow()
            self._session.flush()
        return profile

    def bulk_update(self, updates: Iterable[ProfileUpdate]) -> BulkUpdateResult:
        """Apply each update in its own savepoint and report per-item outcomes.

        A failing item does not stop the batch. Registered stale listeners are
        called with the ids that changed.
        """
        result = BulkUpdateResult()
        for update in updates:
            try:
                value = _check_adjustment(update.priority_adjustment)
                with self._locks.hold(self.club_id, update.member_id):
                    with self._session.begin_nested():
                        profile = self._profile_for_write(update.member_id)
                        profile.admin_priority_adjustment = value
                        if update.notes is not None:
                            profile.notes = update.notes
                        profile.updated_at = utcnow()
                        self._session.flush()
            except ValidationError as exc:
                result.results.append(
                    ProfileUpdateOutcome(update.member_id, False, str(exc))
                )
            except SQLAlchemyError as exc:
                logger.exception("Bulk update failed for member %s", update.member_id)
                result.results.append(
                    ProfileUpdateOutcome(update.member_id, False, f"storage error: {exc}")
                )
            else:
                result.results.append(ProfileUpdateOutcome(update.member_id, True))

        logger.info(
            "Bulk profile update: %d updated, %d failed",
            result.updated_count,
            len(result.results) - result.updated_count,
        )
        self._notify_stale(result.updated_member_ids)
        return result

    def reset_all_adjustments(self) -> BulkUpdateResult:
        """Zero every non-zero adjustment in the club and clear its notes."""
        member_ids = self._session.scalars(
            select(MemberSpeedProfile.member_id)
            .where(
                MemberSpeedProfile.club_id == self.club_id,
                MemberSpeedProfile.admin_priority_adjustment != 0,
            )
            .order_by(MemberSpeedProfile.member_id)
        ).all()

        result = BulkUpdateResult()
        for member_id in member_ids:
            try:
                with self._locks.hold(self.club_id, member_id):
                    with self._session.begin_nested():
                        profile = self._profile_for_write(member_id)
                        profile.admin_priority_adjustment = 0
                        profile.notes = None
                        profile.updated_at = utcnow()
                        self._session.flush()
            except SQLAlchemyError as exc:
                logger.exception("Resetting adjustment failed for member %s", member_id)
                result.results.append(ProfileUpdateOutcome(member_id, False, str(exc)))
            else:
                result.results.append(ProfileUpdateOutcome(member_id, True))

        logger.info("Reset priority adjustments for %d members", result.updated_count)
        self._notify_stale(result.updated_member_ids)
        return result

    def record_pace_of_play(self, member_id: int, minutes: float) -> MemberSpeedProfile:
        """Fold a completed round's duration into the member's rolling average.

        The tier is recomputed from the new average unless an administrator
        has pinned it with ``manual_override``.

        Raises
        ------
        OutOfRange
            If ``minutes`` is not a plausible round duration.
        """
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
            raise OutOfRange("minutes", minutes, MIN_ROUND_MINUTES, MAX_ROUND_MINUTES)
        if not MIN_ROUND_MINUTES <= minutes <= MAX_ROUND_MINUTES:
            raise OutOfRange("minutes", minutes, MIN_ROUND_MINUTES, MAX_ROUND_MINUTES)

        with self._locks.hold(self.club_id, member_id):
            profile = self._profile_for_write(member_id)
            profile.average_minutes = rolling_average(
                profile.average_minutes, profile.observation_count, float(minutes)
            )
            profile.observation_count += 1
            if not profile.manual_override:
                profile.speed_tier = classify_speed_tier(profile.average_minutes, self._thresholds)
            now = utcnow()
            profile.last_calculated = now
            profile.updated_at = now
            self._session.flush()
        logger.debug(
            "Member %s pace now %.1f min (%s)",
            member_id,
            profile.average_minutes,
            profile.speed_tier.value,
        )
        return profile

    def tier_stats(self) -> dict[str, int]:
        """Counts per speed tier plus adjustment and override counts."""
        profiles = self.list_profiles()
        tiers = Counter(p.speed_tier for p in profiles)
        stats = {tier.value.lower(): tiers.get(tier, 0) for tier in SpeedTier}
        stats.update(
            total=len(profiles),
            positive_adjustments=sum(1 for p in profiles if p.admin_priority_adjustment > 0),
            negative_adjustments=sum(1 for p in profiles if p.admin_priority_adjustment < 0),
            manual_overrides=sum(1 for p in profiles if p.manual_override),
        )
        return stats

    # ------------------------------------------------------------------
    # Fairness scores
    # ------------------------------------------------------------------
    def _score_row(self, member_id: int, *, for_update: bool = False) -> Optional[MemberFairnessScore]:
        stmt = select(MemberFairnessScore).where(
            MemberFairnessScore.club_id == self.club_id,
            MemberFairnessScore.member_id == member_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalar(stmt)

    def get_fairness_score(self, member_id: int) -> MemberFairnessScore:
        """Return the stored score row, or an unsaved zeroed one."""
        row = self._score_row(member_id)
        if row is not None:
            return row
        self._require_member(member_id)
        return MemberFairnessScore(member_id=member_id, club_id=self.club_id)

    def fairness_scores(
        self, member_ids: Optional[Iterable[int]] = None
    ) -> list[MemberFairnessScore]:
        """Score rows for the club, highest score first.

        When ``member_ids`` is given only those members are returned.
        """
        stmt = select(MemberFairnessScore).where(MemberFairnessScore.club_id == self.club_id)
        if member_ids is not None:
            stmt = stmt.where(MemberFairnessScore.member_id.in_(list(member_ids)))
        stmt = stmt.order_by(
            MemberFairnessScore.fairness_score.desc(), MemberFairnessScore.member_id
        )
        return list(self._session.scalars(stmt).all())

    def apply_fairness_outcome(
        self,
        member_id: int,
        outcome: FairnessOutcome,
        *,
        now: Optional[datetime] = None,
    ) -> FairnessChange:
        """Update one member's fairness counters after a finalized cycle.

        The row is read with ``FOR UPDATE`` while the member's process lock
        is held, and created on first use.
        """
        with self._locks.hold(self.club_id, member_id):
            row = self._score_row(member_id, for_update=True)
            if row is None:
                row = MemberFairnessScore(member_id=member_id, club_id=self.club_id)
                self._session.add(row)
            before = row.fairness_score
            row.fairness_score = next_fairness_score(before, outcome)
            row.total_entries += 1
            if outcome == FairnessOutcome.PREFERRED:
                row.preferences_granted += 1
            elif outcome == FairnessOutcome.UNASSIGNED:
                row.days_without_good_time += 1
            row.last_updated = now or utcnow()
            self._session.flush()
        return FairnessChange(
            member_id=member_id, outcome=outcome, before=before, after=row.fairness_score
        )


__all__ = [
    "KEEP",
    "BulkUpdateResult",
    "FairnessChange",
    "MEMBER_LOCKS",
    "MemberLockRegistry",
    "ProfileUpdate",
    "ProfileUpdateOutcome",
    "SpeedProfileStore",
]
