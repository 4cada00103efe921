"""Per-member pace-of-play profile and lottery fairness counters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import CLUB_ID_LENGTH, ID_TYPE, Base
from .enums import SpeedTier

if TYPE_CHECKING:
    from .member import Member

MIN_PRIORITY_ADJUSTMENT = -10
MAX_PRIORITY_ADJUSTMENT = 10


class MemberSpeedProfile(Base):
    """Rolling pace-of-play record with an admin-tunable priority adjustment."""

    __tablename__ = "member_speed_profiles"

    member_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True
    )
    """Owning member; one profile per member."""

    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    average_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    """Rolling average round duration, ``None`` until the first observation."""

    observation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    speed_tier: Mapped[SpeedTier] = mapped_column(
        Enum(SpeedTier, native_enum=False, length=20),
        nullable=False,
        default=SpeedTier.AVERAGE,
    )
    admin_priority_adjustment: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    """Administrator bias applied to allocation order, within [-10, 10]."""

    manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """When set, pace observations no longer recompute ``speed_tier``."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_calculated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    member: Mapped["Member"] = relationship(back_populates="speed_profile")

    __table_args__ = (
        CheckConstraint(
            f"admin_priority_adjustment BETWEEN {MIN_PRIORITY_ADJUSTMENT} "
            f"AND {MAX_PRIORITY_ADJUSTMENT}",
            name="adjustment_range",
        ),
    )

    def __init__(
        self,
        *,
        member_id: int,
        club_id: str,
        average_minutes: Optional[float] = None,
        observation_count: int = 0,
        speed_tier: SpeedTier = SpeedTier.AVERAGE,
        admin_priority_adjustment: int = 0,
        manual_override: bool = False,
        notes: Optional[str] = None,
        last_calculated: Optional[datetime] = None,
    ) -> None:
        self.member_id = member_id
        self.club_id = club_id
        self.average_minutes = average_minutes
        self.observation_count = observation_count
        self.speed_tier = speed_tier
        self.admin_priority_adjustment = admin_priority_adjustment
        self.manual_override = manual_override
        self.notes = notes
        self.last_calculated = last_calculated

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<MemberSpeedProfile(member_id={self.member_id}, tier={self.speed_tier.value}, "
            f"adjustment={self.admin_priority_adjustment})>"
        )


class MemberFairnessScore(Base):
    """Counter that pushes members who keep missing their preference forward."""

    __tablename__ = "member_fairness_scores"

    member_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True
    )
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    fairness_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Allocation-order boost; grows while unassigned, resets on a preferred slot."""

    total_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    preferences_granted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    days_without_good_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    member: Mapped["Member"] = relationship(back_populates="fairness_score")

    __table_args__ = (CheckConstraint("fairness_score >= 0", name="score_non_negative"),)

    def __init__(self, *, member_id: int, club_id: str) -> None:
        self.member_id = member_id
        self.club_id = club_id
        self.fairness_score = 0
        self.total_entries = 0
        self.preferences_granted = 0
        self.days_without_good_time = 0

    @property
    def fulfillment_rate(self) -> float:
        if not self.total_entries:
            return 0.0
        return self.preferences_granted / self.total_entries
