"""
Session lifecycle: register, login, refresh, logout and current-user lookup.

Each user has one refresh-token slot. Login and refresh overwrite it, logout
clears it, and a refresh is only honoured when the presented token is the one
currently stored.
"""
import mimetypes
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from citypulse import auth_utils
from citypulse.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    Unauthorized,
    UpstreamFailure,
    ValidationError,
)
from citypulse.logging import get_logger
from citypulse.media import MediaStore, StoredMedia, discard, upload_one
from citypulse.models.user import User, UserRole

logger = get_logger(__name__)

AVATAR_FOLDER = "users"
MIN_PASSWORD_LENGTH = 6


@dataclass
class RegistrationData:
    first_name: str
    last_name: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None


@dataclass
class AvatarFile:
    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class LoginResult:
    user: User
    tokens: TokenPair


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def validate_registration(data: RegistrationData) -> None:
    errors = []
    if not data.first_name.strip():
        errors.append({"field": "firstName", "message": "First name is required"})
    if not data.last_name.strip():
        errors.append({"field": "lastName", "message": "Last name is required"})
    if len(data.password) < MIN_PASSWORD_LENGTH:
        errors.append(
            {
                "field": "password",
                "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            }
        )
    if errors:
        raise ValidationError(errors=errors)


def find_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


# -------------------------------------------------------
# REGISTER
# -------------------------------------------------------
def validate_avatar(avatar: AvatarFile) -> None:
    content_type = avatar.content_type
    if not content_type or content_type == "application/octet-stream":
        content_type, _ = mimetypes.guess_type(avatar.filename or "")
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError(
            errors=[{"field": "avatar", "message": "Avatar must be an image file"}]
        )


def _insert_user(db: Session, data: RegistrationData, avatar_url: Optional[str]) -> User:
    """Hash the password and write the row. Blocking; run off the event loop."""
    new_user = User(
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        email=normalize_email(data.email),
        password_hash=auth_utils.hash_password(data.password),
        phone=_clean(data.phone),
        address=_clean(data.address),
        avatar=avatar_url,
        role=UserRole.CITIZEN.value,
    )
    try:
        db.add(new_user)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(new_user)
    return new_user


async def register(db: Session, store: MediaStore, data: RegistrationData,
                   avatar: Optional[AvatarFile] = None) -> User:
    """Create a citizen account.

    The avatar, if any, is uploaded before the row is written and only its
    URL is stored. A failed upload means no user is created; a failed insert
    deletes the uploaded avatar again.
    """
    validate_registration(data)
    if avatar is not None:
        validate_avatar(avatar)
    if await run_in_threadpool(find_by_email, db, data.email):
        raise DuplicateEmail()

    stored = None
    if avatar is not None:
        stored = await upload_one(store, avatar.content, AVATAR_FOLDER, avatar.filename)

    try:
        new_user = await run_in_threadpool(
            _insert_user, db, data, stored.url if stored else None
        )
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        await _discard_avatar(store, stored)
        raise DuplicateEmail()
    except SQLAlchemyError as exc:
        await _discard_avatar(store, stored)
        logger.exception("user_insert_failed")
        raise UpstreamFailure() from exc

    logger.info("user_registered", user_id=new_user.user_id, has_avatar=stored is not None)
    return new_user


async def _discard_avatar(store: MediaStore, stored: Optional[StoredMedia]) -> None:
    if stored is not None:
        await run_in_threadpool(discard, store, [stored])


# -------------------------------------------------------
# LOGIN
# -------------------------------------------------------
def login(db: Session, email: str, password: str) -> LoginResult:
    user = find_by_email(db, email)
    # Unknown emails are checked against a dummy hash and always fail
    password_hash = user.password_hash if user else None
    if not auth_utils.verify_password(password, password_hash):
        logger.info("login_failed")
        raise InvalidCredentials()

    tokens = TokenPair(
        access_token=auth_utils.issue_access_token(user.user_id),
        refresh_token=auth_utils.issue_refresh_token(user.user_id),
    )
    # Overwriting the slot ends any session held elsewhere
    user.refresh_token = tokens.refresh_token
    db.commit()
    db.refresh(user)

    logger.info("login_succeeded", user_id=user.user_id)
    return LoginResult(user=user, tokens=tokens)


# -------------------------------------------------------
# REFRESH
# -------------------------------------------------------
def refresh(db: Session, refresh_token: str) -> TokenPair:
    """Exchange a refresh token for a new pair and revoke the presented one."""
    user_id = auth_utils.verify_refresh_token(refresh_token)

    user = db.get(User, user_id)
    if user is None or user.refresh_token != refresh_token:
        logger.warning("refresh_token_reuse", user_id=user_id, user_exists=user is not None)
        raise InvalidToken("Invalid refresh token")

    tokens = TokenPair(
        access_token=auth_utils.issue_access_token(user_id),
        refresh_token=auth_utils.issue_refresh_token(user_id),
    )

    # Compare-and-swap: only one of two concurrent refreshes can match the old token
    result = db.execute(
        update(User)
        .where(User.user_id == user_id, User.refresh_token == refresh_token)
        .values(refresh_token=tokens.refresh_token)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.warning("refresh_token_race_lost", user_id=user_id)
        raise InvalidToken("Invalid refresh token")
    db.commit()

    logger.info("tokens_rotated", user_id=user_id)
    return tokens


# -------------------------------------------------------
# LOGOUT
# -------------------------------------------------------
def logout(db: Session, user: User) -> None:
    user.refresh_token = None
    db.commit()
    logger.info("logged_out", user_id=user.user_id)


# -------------------------------------------------------
# CURRENT USER
# -------------------------------------------------------
def get_current_user(db: Session, access_token: Optional[str]) -> User:
    if not access_token:
        raise Unauthorized("Not authorized, no token")
    try:
        user_id = auth_utils.verify_access_token(access_token)
    except InvalidToken:
        raise Unauthorized("Not authorized, token failed")

    user = db.get(User, user_id)
    if user is None:
        raise Unauthorized("Not authorized, user not found")
    return user
