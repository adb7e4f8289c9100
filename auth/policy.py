"""
Authorization policy applied uniformly by every router.

One capability check, (role, resource owner, subject id) -> allow/deny:
  - admin:              always allowed
  - parent / subadmin:  allowed on resources they own; allowed on everything
                        when ownership enforcement is switched off
  - child:              allowed only on resources bound to that child
  - anything else:      denied

Plus the optional seasonal edit window for child updates.
"""

import os
from datetime import date
from typing import Any, Optional, Tuple

from pydantic import BaseModel, Field

from database.models import Role
from services.errors import Forbidden

# ─── Config ───────────────────────────────────────────────────────────────────

ENFORCE_OWNERSHIP = os.getenv("ENFORCE_OWNERSHIP", "true").lower() in ("1", "true", "yes")
CHILD_EDIT_WINDOW = os.getenv("CHILD_EDIT_WINDOW", "")  # e.g. "04-01:05-30"

AUTHOR_ROLES = (Role.PARENT.value, Role.ADMIN.value, Role.SUBADMIN.value)


class Principal(BaseModel):
    """The authenticated caller, built from token claims."""
    id: str
    role: str
    claims: dict = Field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def user_id(self) -> Optional[int]:
        try:
            return int(self.id)
        except (TypeError, ValueError):
            return None


class AuthorizationPolicy:
    def __init__(self, enforce_ownership: bool = ENFORCE_OWNERSHIP):
        self.enforce_ownership = enforce_ownership

    def allows(self, role: str, resource_owner: Any, subject_id: Any) -> bool:
        if role == Role.ADMIN.value:
            return True
        owned = resource_owner is not None and str(resource_owner) == str(subject_id)
        if role == Role.CHILD.value:
            return owned
        if role in (Role.PARENT.value, Role.SUBADMIN.value):
            return owned or not self.enforce_ownership
        return False

    def require(self, principal: Principal, resource_owner: Any, message: str = "Unauthorized access") -> None:
        if not self.allows(principal.role, resource_owner, principal.id):
            raise Forbidden(message)

    def require_author_role(self, principal: Principal, message: str = "Access denied") -> None:
        if principal.role not in AUTHOR_ROLES:
            raise Forbidden(message)

    def sees_everything(self, principal: Principal) -> bool:
        """Whether list endpoints should skip the owner filter for this caller."""
        if principal.is_admin:
            return True
        return principal.role != Role.CHILD.value and not self.enforce_ownership


policy = AuthorizationPolicy()


def get_policy() -> AuthorizationPolicy:
    return policy


# ─── Seasonal edit window ─────────────────────────────────────────────────────

def _parse_month_day(text: str) -> Tuple[int, int]:
    month, day = text.strip().split("-")
    # 2000 is a leap year, so 02-29 is accepted
    date(2000, int(month), int(day))
    return int(month), int(day)


class EditWindow:
    """
    Inclusive month-day range, e.g. EditWindow.parse("04-01:05-30").
    A start after the end wraps the year end: "11-01:02-28" is open November to February.
    """

    def __init__(self, start: Optional[Tuple[int, int]] = None, end: Optional[Tuple[int, int]] = None):
        self.start = start
        self.end = end

    @classmethod
    def parse(cls, text: str) -> "EditWindow":
        if not text or not text.strip():
            return cls()
        try:
            start, end = text.split(":")
            return cls(_parse_month_day(start), _parse_month_day(end))
        except ValueError as e:
            raise ValueError(f"CHILD_EDIT_WINDOW must be MM-DD:MM-DD, got {text!r}") from e

    @property
    def enabled(self) -> bool:
        return self.start is not None and self.end is not None

    def is_open(self, today: date) -> bool:
        if not self.enabled:
            return True
        current = (today.month, today.day)
        if self.start <= self.end:
            return self.start <= current <= self.end
        return current >= self.start or current <= self.end

    def require_open(self, today: date) -> None:
        if not self.is_open(today):
            start = date(2000, *self.start).strftime("%B %d")
            end = date(2000, *self.end).strftime("%B %d")
            raise Forbidden(f"Updates are only allowed from {start} to {end}.")


child_edit_window = EditWindow.parse(CHILD_EDIT_WINDOW)
