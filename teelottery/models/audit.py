from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Date, DateTime, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import CLUB_ID_LENGTH, ID_TYPE, Base


class RestrictionOverride(Base):
    """Append-only audit row written whenever an admin forces a booking
    through a restriction violation."""

    __tablename__ = "restriction_overrides"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    club_id: Mapped[str] = mapped_column(String(CLUB_ID_LENGTH), nullable=False)
    restriction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    member_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    time_block_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lottery_date: Mapped[date] = mapped_column(Date, nullable=False)
    violation_message: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    admin_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index(
            "ix_restriction_overrides_key",
            "restriction_id",
            "entity_id",
            "occurred_at",
        ),
    )


@event.listens_for(RestrictionOverride, "before_update")
def _reject_audit_updates(mapper, connection, target) -> None:
    raise RuntimeError("restriction_overrides is append-only")
