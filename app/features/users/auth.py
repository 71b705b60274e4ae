"""
Credential verification: bcrypt password hashes and signed session tokens.

Session tokens are HS256 JWTs carrying only the subject id and email. Roles are
deliberately left out so that every request re-reads them from the database.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import bcrypt
import jwt

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


class TokenConfigError(RuntimeError):
    """Raised when tokens are used without a configured signing secret."""


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""
    subject_id: str
    email: str


def _secret() -> str:
    if not config.JWT_SECRET:
        raise TokenConfigError("JWT_SECRET environment variable is not set")
    return config.JWT_SECRET


def issue_session_token(user_id: str, email: str, expires_days: Optional[int] = None) -> str:
    """
    Create a signed session token for an authenticated user.

    Args:
        user_id: User ULID
        email: User's (normalized) email address
        expires_days: Validity window, defaults to TOKEN_EXPIRE_DAYS (7)

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(days=config.TOKEN_EXPIRE_DAYS if expires_days is None else expires_days),
    }
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def verify_session_token(token: str) -> Optional[SessionClaims]:
    """
    Verify a session token and return its claims.

    Returns None when the token is malformed, expired, badly signed, or does not
    carry a string subject and email. Callers cannot tell these cases apart.
    """
    secret = _secret()
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        log.debug("Session token expired")
        return None
    except jwt.InvalidTokenError as e:
        log.debug("Session token rejected: %s", e)
        return None

    subject_id = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject_id, str) or not isinstance(email, str):
        log.debug("Session token payload is missing subject or email")
        return None
    return SessionClaims(subject_id=subject_id, email=email)


def hash_password(password: str) -> str:
    """Hash a password with bcrypt. Passwords are truncated to bcrypt's 72 byte limit."""
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a stored bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # A real hash at the configured cost, so a miss costs as much as a hit
    return hash_password("timing-equalizer-not-a-password")


def prime_dummy_hash() -> None:
    """Build the dummy hash up front so the first unknown-email login costs one bcrypt run, like the rest."""
    _dummy_hash()


def verify_login_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Check a login attempt in roughly constant time.

    When no account matched, the password is still compared against a dummy
    hash so response timing does not reveal whether the email exists.
    """
    if password_hash is None:
        verify_password(password, _dummy_hash())
        return False
    return verify_password(password, password_hash)
