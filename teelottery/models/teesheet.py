"""Teesheet-side models the lottery consumes: configs, teesheets, time blocks."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import CLUB_ID_LENGTH, ID_TYPE, Base
from .enums import BookingSource, ConfigType


class TeesheetConfig(Base):
    """Operating hours and block layout applied to a teesheet."""

    __tablename__ = "teesheet_configs"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    config_type: Mapped[ConfigType] = mapped_column(
        Enum(ConfigType, native_enum=False, length=20),
        nullable=False,
        default=ConfigType.REGULAR,
    )
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    """Opening time as ``HH:MM``; ``None`` for custom layouts."""

    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    """Closing time as ``HH:MM``; ``None`` for custom layouts."""

    interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_members_per_block: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("max_members_per_block > 0", name="max_members_positive"),
    )

    @property
    def is_regular(self) -> bool:
        return self.config_type == ConfigType.REGULAR


class Teesheet(Base):
    """The schedule of bookable time blocks for one club and date."""

    __tablename__ = "teesheets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    play_date: Mapped[date] = mapped_column(Date, nullable=False)
    config_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("teesheet_configs.id", ondelete="RESTRICT"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    config: Mapped["TeesheetConfig"] = relationship()
    time_blocks: Mapped[list["TimeBlock"]] = relationship(
        back_populates="teesheet",
        cascade="all, delete-orphan",
        order_by="TimeBlock.start_time",
    )

    __table_args__ = (UniqueConstraint("club_id", "play_date"),)

    @classmethod
    def get_for_date(
        cls, session: Session, club_id: str, on_date: date
    ) -> Optional["Teesheet"]:
        """Return the teesheet for ``club_id`` on ``on_date`` if one exists."""

        return session.scalar(
            select(cls).where(cls.club_id == club_id, cls.play_date == on_date)
        )


class TimeBlock(Base):
    """A concrete bookable tee time (the allocation "slot")."""

    __tablename__ = "time_blocks"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    teesheet_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("teesheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    max_members: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    teesheet: Mapped["Teesheet"] = relationship(back_populates="time_blocks")
    bookings: Mapped[list["TimeBlockBooking"]] = relationship(
        back_populates="time_block", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("max_members > 0", name="max_members_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<TimeBlock(id={self.id}, start_time='{self.start_time}', "
            f"max_members={self.max_members})>"
        )

    def booked_count(self, session: Session) -> int:
        """Count bookings straight from the database, bypassing loaded state."""

        return int(
            session.scalar(
                select(func.count(TimeBlockBooking.id)).where(
                    TimeBlockBooking.time_block_id == self.id
                )
            )
            or 0
        )

    def remaining_capacity(self, session: Session) -> int:
        return self.max_members - self.booked_count(session)


class TimeBlockBooking(Base):
    """A member placed on a time block, by the lottery or manually."""

    __tablename__ = "time_block_bookings"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    time_block_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("time_blocks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    member_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_time: Mapped[str] = mapped_column(String(5), nullable=False)
    source: Mapped[BookingSource] = mapped_column(
        Enum(BookingSource, native_enum=False, length=20),
        nullable=False,
        default=BookingSource.MANUAL,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    time_block: Mapped["TimeBlock"] = relationship(back_populates="bookings")

    __table_args__ = (
        UniqueConstraint("time_block_id", "member_id"),
        # One booking per member per day.
        UniqueConstraint("club_id", "booking_date", "member_id"),
    )

    @classmethod
    def booked_member_ids(
        cls, session: Session, club_id: str, on_date: date, member_ids
    ) -> set[int]:
        """Return the subset of ``member_ids`` already booked on ``on_date``."""

        ids = list(member_ids)
        if not ids:
            return set()
        rows = session.scalars(
            select(cls.member_id).where(
                cls.club_id == club_id,
                cls.booking_date == on_date,
                cls.member_id.in_(ids),
            )
        ).all()
        return set(rows)
