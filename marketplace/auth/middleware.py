"""Bearer-token identity resolution dependencies for FastAPI."""

import uuid

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import get_db
from marketplace.errors import Forbidden, Unauthorized
from marketplace.models.user import User, UserRole
from marketplace.utils.crypto import TokenError, decode_access_token


class AuthenticatedUser:
    """Container for the verified caller context."""

    def __init__(self, user_id: uuid.UUID, user: User) -> None:
        self.user_id = user_id
        self.user = user

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _resolve(db: AsyncSession, token: str) -> AuthenticatedUser:
    try:
        user_id = decode_access_token(token)
    except TokenError as e:
        raise Unauthorized(str(e))

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("Invalid token")
    if not user.is_active:
        raise Forbidden("Account is disabled")
    return AuthenticatedUser(user_id=user_id, user=user)


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Resolve the caller from ``Authorization: Bearer <token>`` or fail with 401."""
    token = extract_bearer_token(request)
    if token is None:
        raise Unauthorized("Missing access token")
    return await _resolve(db, token)


async def optional_auth(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser | None:
    """Like verify_request, but anonymous callers (guests) resolve to None."""
    token = extract_bearer_token(request)
    if token is None:
        return None
    try:
        return await _resolve(db, token)
    except Unauthorized:
        return None


async def require_admin(
    auth: AuthenticatedUser = Depends(verify_request),
) -> AuthenticatedUser:
    if not auth.is_admin:
        raise Forbidden("Admin privileges required")
    return auth
