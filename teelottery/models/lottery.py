"""Database models for lottery submissions and per-date processing state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..errors import InvalidTransition
from .base import CLUB_ID_LENGTH, ID_TYPE, Base
from .enums import LotteryDateStatus, LotteryEntryStatus, TimeWindow

if TYPE_CHECKING:
    from .member import Member
    from .teesheet import TimeBlock


def _window_column(nullable: bool):
    return mapped_column(
        Enum(TimeWindow, native_enum=False, length=20), nullable=nullable
    )


def _entry_status_column():
    return mapped_column(
        Enum(LotteryEntryStatus, native_enum=False, length=20),
        nullable=False,
        default=LotteryEntryStatus.PENDING,
    )


_ACTIVE_ONLY = text("status != 'CANCELLED'")


@dataclass(frozen=True)
class GroupRoster:
    """Ordered, duplicate-free member set of a group with the leader first.

    Attributes
    ----------
    leader_id : int
        Member who submitted the group.
    member_ids : tuple[int, ...]
        Every member of the group, leader included at position 0.
    """

    leader_id: int
    member_ids: tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.member_ids) < 2:
            raise ValueError("A group must contain at least two members")
        if self.member_ids[0] != self.leader_id:
            raise ValueError("The group leader must be the first member")
        if len(set(self.member_ids)) != len(self.member_ids):
            raise ValueError("A member can only appear once in a group")

    @classmethod
    def build(cls, leader_id: int, member_ids: Iterable[int]) -> "GroupRoster":
        """Create a roster from ``leader_id`` plus ``member_ids``.

        The leader is moved to the front when present in ``member_ids`` and
        prepended otherwise. Any other repeated id raises :class:`ValueError`.
        """
        others = [m for m in member_ids if m != leader_id]
        return cls(leader_id=leader_id, member_ids=(leader_id, *others))

    def __len__(self) -> int:
        return len(self.member_ids)

    def __contains__(self, member_id: object) -> bool:
        return member_id in self.member_ids

    def __iter__(self):
        return iter(self.member_ids)


class LotteryDate(Base):
    """Control record tracking the processing state of one lottery date."""

    __tablename__ = "lottery_dates"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False)
    lottery_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[LotteryDateStatus] = mapped_column(
        Enum(LotteryDateStatus, native_enum=False, length=20),
        nullable=False,
        default=LotteryDateStatus.PENDING,
    )
    next_submission_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    """Next value handed out as a submission sequence for this date."""

    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Message of the most recent failed finalization, cleared on success."""

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (UniqueConstraint("club_id", "lottery_date"),)

    def __init__(
        self,
        *,
        club_id: str,
        lottery_date: date,
        status: LotteryDateStatus = LotteryDateStatus.PENDING,
        next_submission_seq: int = 1,
    ) -> None:
        self.club_id = club_id
        self.lottery_date = lottery_date
        self.status = status
        self.next_submission_seq = next_submission_seq

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<LotteryDate(club_id='{self.club_id}', lottery_date={self.lottery_date}, status={self.status.value})>"

    @classmethod
    def get(cls, session: Session, club_id: str, lottery_date: date) -> Optional["LotteryDate"]:
        return session.scalar(
            select(cls).where(cls.club_id == club_id, cls.lottery_date == lottery_date)
        )

    @classmethod
    def get_or_create(cls, session: Session, club_id: str, lottery_date: date) -> "LotteryDate":
        """Return the control record for the date, creating a PENDING one if needed."""

        record = cls.get(session, club_id, lottery_date)
        if record is None:
            record = cls(club_id=club_id, lottery_date=lottery_date)
            session.add(record)
            session.flush()
        return record

    def allocate_submission_seq(self) -> int:
        seq = self.next_submission_seq
        self.next_submission_seq = seq + 1
        return seq

    def transition_to(self, target: LotteryDateStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransition(
                f"Lottery date {self.lottery_date} cannot move from "
                f"{self.status.value} to {target.value}"
            )
        now = datetime.now(timezone.utc)
        if target == LotteryDateStatus.PROCESSING:
            self.processing_started_at = now
        elif target == LotteryDateStatus.COMPLETED:
            self.completed_at = now
            self.last_error = None
        self.status = target
        self.updated_at = now


class _SubmissionMixin:
    """State-machine helpers shared by individual entries and groups."""

    def transition_to(self, target: LotteryEntryStatus) -> None:
        current: LotteryEntryStatus = self.status  # type: ignore[attr-defined]
        if not current.can_transition_to(target):
            raise InvalidTransition(
                f"{type(self).__name__} {self.id} cannot move from "  # type: ignore[attr-defined]
                f"{current.value} to {target.value}"
            )
        self.status = target  # type: ignore[attr-defined]
        self.updated_at = datetime.now(timezone.utc)  # type: ignore[attr-defined]

    def mark_assigned(self, time_block_id: int, processed_at: datetime) -> None:
        self.transition_to(LotteryEntryStatus.ASSIGNED)
        self.assigned_time_block_id = time_block_id  # type: ignore[attr-defined]
        self.processed_at = processed_at  # type: ignore[attr-defined]

    @property
    def is_active(self) -> bool:
        return self.status != LotteryEntryStatus.CANCELLED  # type: ignore[attr-defined]


class LotteryEntry(_SubmissionMixin, Base):
    """One member's individual submission for one lottery date."""

    __tablename__ = "lottery_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False)
    member_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    """Member who submitted the entry."""

    lottery_date: Mapped[date] = mapped_column(Date, nullable=False)
    preferred_window: Mapped[TimeWindow] = _window_column(nullable=False)
    alternate_window: Mapped[Optional[TimeWindow]] = _window_column(nullable=True)
    specific_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    """Soft exact-time hint (``HH:MM``) inside the requested windows."""

    member_class: Mapped[str] = mapped_column(String(50), nullable=False)
    """Member class snapshot used by booking restrictions."""

    status: Mapped[LotteryEntryStatus] = _entry_status_column()
    submission_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    """Per-date monotonic submission order; the allocator's final tiebreak."""

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_time_block_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    member: Mapped["Member"] = relationship()
    assigned_time_block: Mapped[Optional["TimeBlock"]] = relationship()

    __table_args__ = (
        Index("ix_lottery_entries_club_date", "club_id", "lottery_date"),
        # At most one non-cancelled entry per member and date.
        Index(
            "uq_lottery_entries_active_member_date",
            "club_id",
            "member_id",
            "lottery_date",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    @property
    def member_ids(self) -> tuple[int, ...]:
        return (self.member_id,)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LotteryEntry(id={self.id}, member_id={self.member_id}, "
            f"lottery_date={self.lottery_date}, status={self.status.value})>"
        )


class LotteryGroup(_SubmissionMixin, Base):
    """A submission for two or more members who must play together."""

    __tablename__ = "lottery_groups"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False)
    leader_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    """Member who formed and submitted the group."""

    lottery_date: Mapped[date] = mapped_column(Date, nullable=False)
    preferred_window: Mapped[TimeWindow] = _window_column(nullable=False)
    alternate_window: Mapped[Optional[TimeWindow]] = _window_column(nullable=True)
    specific_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    leader_member_class: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[LotteryEntryStatus] = _entry_status_column()
    submission_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_time_block_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    members: Mapped[list["LotteryGroupMember"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="LotteryGroupMember.position",
    )
    """Group membership rows in roster order (leader at position 0)."""

    leader: Mapped["Member"] = relationship(foreign_keys=[leader_id])
    assigned_time_block: Mapped[Optional["TimeBlock"]] = relationship()

    __table_args__ = (Index("ix_lottery_groups_club_date", "club_id", "lottery_date"),)

    @property
    def roster(self) -> GroupRoster:
        return GroupRoster(
            leader_id=self.leader_id,
            member_ids=tuple(m.member_id for m in self.members),
        )

    @roster.setter
    def roster(self, roster: GroupRoster) -> None:
        self.leader_id = roster.leader_id
        self.members = [
            LotteryGroupMember(member_id=member_id, position=position)
            for position, member_id in enumerate(roster.member_ids)
        ]

    @property
    def member_ids(self) -> tuple[int, ...]:
        return tuple(m.member_id for m in self.members)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LotteryGroup(id={self.id}, leader_id={self.leader_id}, "
            f"size={len(self.members)}, status={self.status.value})>"
        )


class LotteryGroupMember(Base):
    """One member's seat in a :class:`LotteryGroup`."""

    __tablename__ = "lottery_group_members"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lottery_groups.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    group: Mapped["LotteryGroup"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("group_id", "member_id"),
        UniqueConstraint("group_id", "position"),
    )


__all__ = [
    "GroupRoster",
    "LotteryDate",
    "LotteryEntry",
    "LotteryGroup",
    "LotteryGroupMember",
]
