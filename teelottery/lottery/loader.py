"""Read everything :func:`~teelottery.lottery.allocation.allocate` needs for a date."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ..errors import LotteryUnavailable
from ..models import (
    LotteryEntry,
    LotteryEntryStatus,
    LotteryGroup,
    MemberFairnessScore,
    MemberSpeedProfile,
    Teesheet,
    TeesheetConfig,
    TimeBlock,
    TimeBlockBooking,
)
from .allocation import AllocatableUnit, SlotSnapshot, build_units
from .scoring import ProfileSnapshot
from .windows import WindowInfo, is_lottery_available, parse_time_to_minutes, windows_for_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotteryInputs:
    """Snapshot of a date's allocation inputs, detached from the session."""

    lottery_date: date
    teesheet_id: int
    config: TeesheetConfig
    windows: tuple[WindowInfo, ...]
    slots: tuple[SlotSnapshot, ...]
    units: tuple[AllocatableUnit, ...]
    profiles: dict[int, ProfileSnapshot]
    fairness: dict[int, int]

    @property
    def max_members_per_block(self) -> int:
        return self.config.max_members_per_block


def load_config_for_date(
    session: Session, club_id: str, lottery_date: date
) -> tuple[Teesheet, TeesheetConfig]:
    """Return the teesheet and its config, or raise when the lottery is off.

    Raises
    ------
    LotteryUnavailable
        If no teesheet exists for the date or its config is not regular.
    """
    teesheet = Teesheet.get_for_date(session, club_id, lottery_date)
    if teesheet is None:
        raise LotteryUnavailable(f"No teesheet exists for {lottery_date}")
    config = teesheet.config
    if not is_lottery_available(config):
        raise LotteryUnavailable(
            f"Teesheet for {lottery_date} uses a custom configuration; the lottery is disabled"
        )
    return teesheet, config


def load_slots(session: Session, teesheet_id: int) -> list[SlotSnapshot]:
    """Snapshot every time block of the teesheet with its remaining capacity."""
    booked = (
        select(
            TimeBlockBooking.time_block_id.label("time_block_id"),
            func.count(TimeBlockBooking.id).label("booked"),
        )
        .group_by(TimeBlockBooking.time_block_id)
        .subquery()
    )
    rows = session.execute(
        select(TimeBlock.id, TimeBlock.start_time, TimeBlock.max_members, booked.c.booked)
        .outerjoin(booked, booked.c.time_block_id == TimeBlock.id)
        .where(TimeBlock.teesheet_id == teesheet_id)
        .order_by(TimeBlock.start_time, TimeBlock.id)
    ).all()
    return [
        SlotSnapshot(
            slot_id=block_id,
            start_minutes=parse_time_to_minutes(start_time),
            capacity=max_members,
            remaining=max_members - int(booked_count or 0),
        )
        for block_id, start_time, max_members, booked_count in rows
    ]


def load_pending_units(
    session: Session, club_id: str, lottery_date: date
) -> list[AllocatableUnit]:
    entries = session.scalars(
        select(LotteryEntry).where(
            LotteryEntry.club_id == club_id,
            LotteryEntry.lottery_date == lottery_date,
            LotteryEntry.status == LotteryEntryStatus.PENDING,
        )
    ).all()
    groups = session.scalars(
        select(LotteryGroup)
        .options(selectinload(LotteryGroup.members))
        .where(
            LotteryGroup.club_id == club_id,
            LotteryGroup.lottery_date == lottery_date,
            LotteryGroup.status == LotteryEntryStatus.PENDING,
        )
    ).all()
    return build_units(entries, groups)


def load_profile_snapshots(
    session: Session, club_id: str, member_ids: Iterable[int]
) -> dict[int, ProfileSnapshot]:
    ids = sorted(set(member_ids))
    if not ids:
        return {}
    rows = session.scalars(
        select(MemberSpeedProfile).where(
            MemberSpeedProfile.club_id == club_id,
            MemberSpeedProfile.member_id.in_(ids),
        )
    ).all()
    return {
        row.member_id: ProfileSnapshot(
            member_id=row.member_id,
            speed_tier=row.speed_tier,
            priority_adjustment=row.admin_priority_adjustment,
        )
        for row in rows
    }


def load_fairness_scores(
    session: Session, club_id: str, member_ids: Iterable[int]
) -> dict[int, int]:
    ids = sorted(set(member_ids))
    if not ids:
        return {}
    rows = session.execute(
        select(MemberFairnessScore.member_id, MemberFairnessScore.fairness_score).where(
            MemberFairnessScore.club_id == club_id,
            MemberFairnessScore.member_id.in_(ids),
        )
    ).all()
    return {member_id: score for member_id, score in rows}


def load_lottery_inputs(
    session: Session,
    club_id: str,
    lottery_date: date,
    *,
    units: Optional[Iterable[AllocatableUnit]] = None,
) -> LotteryInputs:
    """Load the teesheet, slots, pending units, profiles and fairness scores.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    club_id : str
        Club whose rows are read.
    lottery_date : date
        Date being allocated.
    units : Optional[Iterable[AllocatableUnit]], default: None
        Pre-built units; when omitted, the date's pending entries and groups
        are loaded.

    Raises
    ------
    LotteryUnavailable
        If the date has no regular teesheet.
    """
    teesheet, config = load_config_for_date(session, club_id, lottery_date)
    windows = windows_for_config(config)
    slots = load_slots(session, teesheet.id)
    unit_list = list(units) if units is not None else load_pending_units(
        session, club_id, lottery_date
    )
    member_ids = [m for unit in unit_list for m in unit.member_ids]
    logger.debug(
        "Loaded %d slots and %d units for %s (club %s)",
        len(slots),
        len(unit_list),
        lottery_date,
        club_id,
    )
    return LotteryInputs(
        lottery_date=lottery_date,
        teesheet_id=teesheet.id,
        config=config,
        windows=tuple(windows),
        slots=tuple(slots),
        units=tuple(unit_list),
        profiles=load_profile_snapshots(session, club_id, member_ids),
        fairness=load_fairness_scores(session, club_id, member_ids),
    )


__all__ = [
    "LotteryInputs",
    "load_config_for_date",
    "load_fairness_scores",
    "load_lottery_inputs",
    "load_pending_units",
    "load_profile_snapshots",
    "load_slots",
]
