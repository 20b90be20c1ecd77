"""Read side of the identity service: user lookups for author snapshots and push fan-out."""

from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from chathub.models.tables import users
from chathub.models.user import UserProfile


class UserDirectory:
    """Resolves users from the identity-owned ``users`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def resolve_user(self, user_id: Optional[str]) -> Optional[UserProfile]:
        if not user_id:
            return None
        with self._session_factory() as session:
            row = session.execute(
                select(users).where(users.c.id == str(user_id))
            ).first()
        if row is None:
            return None
        return UserProfile(
            id=row.id,
            display_name=row.name,
            avatar_url=row.profile_picture,
            push_token=row.push_token,
            role=row.role or "Member",
        )

    def push_tokens_except(self, author_id: str) -> List[str]:
        """Push tokens of every user other than the author."""
        with self._session_factory() as session:
            rows = session.execute(
                select(users.c.push_token).where(
                    users.c.id != author_id,
                    users.c.push_token.is_not(None),
                    users.c.push_token != "",
                )
            ).fetchall()
        # De-duplicate tokens shared by several accounts on one device
        return list(dict.fromkeys(row.push_token for row in rows))
