import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from passlib.hash import bcrypt

from citypulse.config import get_settings
from citypulse.errors import InvalidToken

# Verified against when the email is unknown, so both login failure paths do the same work
_DUMMY_HASH = bcrypt.hash("citypulse-dummy-password")


# ---------------------------
# Password Hashing
# ---------------------------
def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        bcrypt.verify(plain_password, _DUMMY_HASH)
        return False
    try:
        return bcrypt.verify(plain_password, hashed_password)
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


# ---------------------------
# JWT Token Helpers
# ---------------------------
def issue_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a short-lived access token carrying only the user id."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_refresh_token(user_id: int) -> str:
    """Sign a refresh token with the refresh secret.

    The ``jti`` makes every token unique, so a rotated token never equals the
    one it replaces even when both are issued within the same second.
    """
    settings = get_settings()
    to_encode = {
        "sub": str(user_id),
        "jti": uuid.uuid4().hex,
        "iat": datetime.now(timezone.utc),
    }
    if settings.refresh_token_expire_days:
        to_encode["exp"] = datetime.now(timezone.utc) + timedelta(
            days=settings.refresh_token_expire_days
        )
    return jwt.encode(to_encode, settings.refresh_token_secret, algorithm=settings.jwt_algorithm)


def verify(token: str, secret: str) -> int:
    """Return the user id a token was issued for, or raise InvalidToken."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise InvalidToken()

    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise InvalidToken()


def verify_access_token(token: str) -> int:
    return verify(token, get_settings().jwt_secret)


def verify_refresh_token(token: str) -> int:
    return verify(token, get_settings().refresh_token_secret)
