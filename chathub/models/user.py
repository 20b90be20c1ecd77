"""User profile as seen by the chat core."""

from dataclasses import dataclass
from typing import Optional


ELEVATED_ROLES = ("Admin",)


@dataclass
class UserProfile:
    """Read-only projection of a user owned by the identity service."""
    id: str
    display_name: str
    avatar_url: Optional[str] = None
    push_token: Optional[str] = None
    role: str = "Member"  # "Member" | "Admin"

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES
