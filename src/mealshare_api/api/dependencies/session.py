"""Caller resolution for MealShare routes.

The web tier authenticates the student and forwards their user id in
``X-Session-User``; this service trusts that header and only checks that it
names an existing user.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.db.session import get_session
from mealshare_api.models.user import User
from mealshare_api.services.errors import InvalidInputError, NotFoundError, UnauthorizedError


SESSION_USER_HEADER = "X-Session-User"


def parse_session_user(raw: str | None) -> UUID:
    if not raw or not raw.strip():
        raise UnauthorizedError("Unauthorized")
    try:
        return UUID(raw.strip())
    except ValueError as error:
        raise InvalidInputError(f"{SESSION_USER_HEADER} must be a user id") from error


async def require_caller(
    session_user: str | None = Header(None, alias=SESSION_USER_HEADER),
    db: AsyncSession = Depends(get_session),
) -> User:
    """The student making the request, as requester, donor or credential owner."""

    user = await db.get(User, parse_session_user(session_user))
    if user is None:
        raise NotFoundError("User not found")
    return user


__all__ = ["SESSION_USER_HEADER", "parse_session_user", "require_caller"]
