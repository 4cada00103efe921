from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .enums import (  # noqa: F401
    BookingSource,
    ConfigType,
    LotteryDateStatus,
    LotteryEntryStatus,
    SpeedTier,
    TimeWindow,
)
from .member import Member  # noqa: F401
from .teesheet import Teesheet, TeesheetConfig, TimeBlock, TimeBlockBooking  # noqa: F401
from .lottery import (  # noqa: F401
    GroupRoster,
    LotteryDate,
    LotteryEntry,
    LotteryGroup,
    LotteryGroupMember,
)
from .profile import MemberFairnessScore, MemberSpeedProfile  # noqa: F401
from .audit import RestrictionOverride  # noqa: F401

__all__ = [
    "Base",
    "BookingSource",
    "ConfigType",
    "GroupRoster",
    "LotteryDate",
    "LotteryDateStatus",
    "LotteryEntry",
    "LotteryEntryStatus",
    "LotteryGroup",
    "LotteryGroupMember",
    "Member",
    "MemberFairnessScore",
    "MemberSpeedProfile",
    "RestrictionOverride",
    "SpeedTier",
    "Teesheet",
    "TeesheetConfig",
    "TimeBlock",
    "TimeBlockBooking",
    "TimeWindow",
]
