"""Exception taxonomy for the lottery engine.

Validation errors are raised before any state change. Finalization does not
raise the per-unit errors (capacity conflicts, restriction violations,
persistence failures); it collects them into its report instead. Only a
failure to persist the per-date control record propagates.
"""

from __future__ import annotations

from typing import Optional


class LotteryError(Exception):
    """Base class for every error raised by the lottery engine."""


class ValidationError(LotteryError, ValueError):
    """A submission or admin edit was malformed and was rejected unchanged."""


class DuplicateEntry(ValidationError):
    def __init__(self, member_ids, lottery_date) -> None:
        self.member_ids = tuple(member_ids)
        self.lottery_date = lottery_date
        joined = ", ".join(str(m) for m in self.member_ids)
        super().__init__(
            f"Member(s) {joined} already have a lottery submission for {lottery_date}"
        )


class GroupTooLarge(ValidationError):
    def __init__(self, size: int, capacity: int) -> None:
        self.size = size
        self.capacity = capacity
        super().__init__(
            f"Group of {size} exceeds the {capacity}-player capacity of a tee time"
        )


class InvalidWindow(ValidationError):
    """Unknown window, alternate equal to preferred, or unusable exact time."""


class LotteryClosed(ValidationError):
    """Submissions are only accepted while the date is still PENDING."""


class OutOfRange(ValidationError):
    def __init__(self, field: str, value, minimum, maximum) -> None:
        self.field = field
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"{field} must be between {minimum} and {maximum}, got {value}")


class UnknownMember(ValidationError):
    def __init__(self, member_id) -> None:
        self.member_id = member_id
        super().__init__(f"Member {member_id} does not exist in this club")


class ConfigurationError(LotteryError):
    """The teesheet configuration does not support a lottery."""


class InvalidConfiguration(ConfigurationError):
    """Operating hours are unparsable or empty."""


class LotteryUnavailable(ConfigurationError):
    """No regular teesheet exists for the date, so the lottery is switched off."""


class InvalidTransition(LotteryError):
    """A status change is not allowed by the state machine."""


class PermissionDenied(LotteryError):
    """The caller's role does not allow the requested operation."""


class UnitError(LotteryError):
    """Failure scoped to a single allocatable unit during finalization."""

    def __init__(self, unit_key: str, message: str) -> None:
        self.unit_key = unit_key
        self.message = message
        super().__init__(f"{unit_key}: {message}")


class CapacityConflict(UnitError):
    def __init__(
        self,
        unit_key: str,
        message: str,
        *,
        time_block_id: Optional[int] = None,
    ) -> None:
        self.time_block_id = time_block_id
        super().__init__(unit_key, message)


class RestrictionViolationError(UnitError):
    def __init__(self, unit_key: str, violations) -> None:
        self.violations = list(violations)
        summary = "; ".join(v.message for v in self.violations)
        super().__init__(unit_key, summary or "booking restriction violated")


class PersistenceFailure(UnitError):
    """Storage error; the affected unit (or the whole run) was rolled back."""


__all__ = [
    "CapacityConflict",
    "ConfigurationError",
    "DuplicateEntry",
    "GroupTooLarge",
    "InvalidConfiguration",
    "InvalidTransition",
    "InvalidWindow",
    "LotteryClosed",
    "LotteryError",
    "LotteryUnavailable",
    "OutOfRange",
    "PermissionDenied",
    "PersistenceFailure",
    "RestrictionViolationError",
    "UnitError",
    "UnknownMember",
    "ValidationError",
]
