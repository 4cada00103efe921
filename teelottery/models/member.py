from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, String, UniqueConstraint, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import CLUB_ID_LENGTH, ID_TYPE, Base

if TYPE_CHECKING:
    from .profile import MemberFairnessScore, MemberSpeedProfile


class Member(Base):
    """A club member as seen by the lottery engine.

    General member management lives elsewhere; the engine only needs the
    identity, the club the member belongs to and the member class consumed by
    booking restrictions.
    """

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False, index=True)
    member_number: Mapped[str] = mapped_column(String(32), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    member_class: Mapped[str] = mapped_column(String(50), nullable=False, default="REGULAR")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    speed_profile: Mapped[Optional["MemberSpeedProfile"]] = relationship(
        back_populates="member", uselist=False, cascade="all, delete-orphan"
    )
    fairness_score: Mapped[Optional["MemberFairnessScore"]] = relationship(
        back_populates="member", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("club_id", "member_number"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return (
            f"<Member(id={self.id}, club_id='{self.club_id}', "
            f"member_number='{self.member_number}', member_class='{self.member_class}')>"
        )

    @classmethod
    def get_in_club(cls, session: Session, club_id: str, member_id: int) -> Optional["Member"]:
        """Retrieve a member by id, scoped to ``club_id``."""

        return session.scalar(
            select(cls).where(cls.id == member_id, cls.club_id == club_id)
        )

    @classmethod
    def get_by_member_number(
        cls, session: Session, club_id: str, member_number: str
    ) -> Optional["Member"]:
        """Retrieve a member by their club member number."""

        return session.scalar(
            select(cls).where(cls.club_id == club_id, cls.member_number == member_number)
        )
