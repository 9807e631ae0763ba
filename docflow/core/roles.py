"""
Closed set of directory roles.

Role strings arriving over HTTP or from stored template definitions are
parsed exactly once with Role.parse(); everything downstream works with the
enum member.
"""

from __future__ import annotations

from enum import Enum

from docflow.core.exceptions import ValidationError


class Role(str, Enum):
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, raw: str | Role) -> Role:
        """Accept 'manager', 'MANAGER' or 'ROLE_MANAGER'."""
        if isinstance(raw, cls):
            return raw
        name = (raw or "").strip().upper()
        if name.startswith("ROLE_"):
            name = name[len("ROLE_"):]
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(
                f"Unknown role '{raw}'",
                details={"role": f"must be one of {sorted(r.value for r in cls)}"},
            ) from None
