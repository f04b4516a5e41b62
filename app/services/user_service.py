"""User service for business logic."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.users import users


class UserService:
    """Service for user lookups.

    Rows are read straight from the database: ownership checks compare
    ``UUID`` values, which a JSON cache would hand back as strings.
    """

    async def get_user_by_id(self, db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID."""
        query = select(users).where(users.c.id == user_id)
        result = await db.execute(query)
        user = result.mappings().first()

        return dict(user) if user else None
