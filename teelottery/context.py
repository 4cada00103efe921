from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import PermissionDenied

ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"


@dataclass(frozen=True)
class ClubContext:
    """Tenant and caller identity passed explicitly to every engine entry point.

    Attributes
    ----------
    club_id : str
        Organization whose rows the call may read or write.
    actor_id : Optional[str]
        Opaque identifier of the caller, recorded on audit rows.
    role : str
        ``"admin"`` or ``"member"``.
    """

    club_id: str
    actor_id: Optional[str] = None
    role: str = MEMBER_ROLE

    def __post_init__(self) -> None:
        if not self.club_id or not self.club_id.strip():
            raise ValueError("club_id must not be empty")
        if self.role not in (ADMIN_ROLE, MEMBER_ROLE):
            raise ValueError(f"Unknown role {self.role!r}")

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise PermissionDenied(f"Only administrators may {action}")

    @classmethod
    def admin(cls, club_id: str, actor_id: Optional[str] = None) -> "ClubContext":
        return cls(club_id=club_id, actor_id=actor_id, role=ADMIN_ROLE)
