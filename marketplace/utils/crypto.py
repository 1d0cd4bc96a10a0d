"""Password hashing (bcrypt) and access tokens (PyJWT)."""

import uuid
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt

from marketplace.config import settings


class TokenError(Exception):
    """Raised when an access token is missing claims, expired or tampered with."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(
    user_id: uuid.UUID, role: str, expires_delta: timedelta | None = None
) -> str:
    """Issue a signed access token for ``user_id``."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=settings.jwt_expire_days)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> uuid.UUID:
    """Verify a token and return the user id it was issued for."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise TokenError("Invalid token subject") from e
