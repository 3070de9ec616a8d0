"""
Directory - resolves user ids to roles.

The workflow managers only ever ask "who is this and what role do they
have"; any object with an async ``resolve_user`` works in its place.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.enums import UserRole
from backend.app.models.user import User


@dataclass(frozen=True)
class UserRef:
    id: int
    role: UserRole


class Directory:
    """Read-only user lookups backed by the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_user(self, user_id: int) -> Optional[UserRef]:
        result = await self.db.execute(
            select(User.id, User.role).where(User.id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return UserRef(id=row.id, role=row.role)
