"""The tee-time lottery engine: windows, intake, allocation and finalization."""

from .allocation import (
    AllocatableUnit,
    Assignment,
    AssignmentMove,
    AssignmentStats,
    Placement,
    SlotSnapshot,
    UnitKind,
    WindowMatch,
    allocate,
    build_units,
    preview_stats,
)
from .finalization import FinalizationCoordinator, FinalizationReport
from .intake import EntryIntake, SubmissionLookup
from .loader import LotteryInputs, load_lottery_inputs
from .profiles import BulkUpdateResult, ProfileUpdate, SpeedProfileStore
from .restrictions import NullRestrictionChecker, RestrictionChecker, RestrictionViolation
from .scoring import FairnessOutcome, PriorityKey, ProfileSnapshot, priority_key
from .windows import WindowInfo, calculate_time_windows, windows_for_config

__all__ = [
    "AllocatableUnit",
    "Assignment",
    "AssignmentMove",
    "AssignmentStats",
    "BulkUpdateResult",
    "EntryIntake",
    "FairnessOutcome",
    "FinalizationCoordinator",
    "FinalizationReport",
    "LotteryInputs",
    "NullRestrictionChecker",
    "Placement",
    "PriorityKey",
    "ProfileSnapshot",
    "ProfileUpdate",
    "RestrictionChecker",
    "RestrictionViolation",
    "SlotSnapshot",
    "SpeedProfileStore",
    "SubmissionLookup",
    "UnitKind",
    "WindowInfo",
    "WindowMatch",
    "allocate",
    "build_units",
    "calculate_time_windows",
    "load_lottery_inputs",
    "preview_stats",
    "priority_key",
    "windows_for_config",
]
