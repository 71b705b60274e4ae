"""
FastAPI dependencies for authentication.
"""
from dataclasses import dataclass, field
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.auth import verify_session_token
from app.features.permissions.models import Role, user_roles
from app.utils import get_logger


log = get_logger(__name__)

# auto_error=False so a missing header gets the same 401 as a bad token
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedSubject:
    """The verified identity making the request, with its current role names."""
    id: str
    email: str
    roles: list[str] = field(default_factory=list)


def _unauthenticated() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_user_role_names(db: AsyncSession, user_id: str) -> list[str]:
    """Names of the roles currently assigned to a user, sorted."""
    result = await db.execute(
        select(Role.name)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user_id)
        .order_by(Role.name)
    )
    return list(result.scalars().all())


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> AuthenticatedSubject:
    """
    Get the current authenticated user from the bearer token.

    This dependency:
    1. Extracts the token from the Authorization header
    2. Verifies signature and expiry
    3. Checks the user still exists and still has the email the token was issued for
    4. Loads the user's role names fresh from the database

    Every failure produces the same 401; the reason is only logged.

    Usage:
        @router.get("/me")
        async def get_me(user: AuthenticatedSubject = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        log.debug("Authentication failed: no bearer token")
        raise _unauthenticated()

    claims = verify_session_token(credentials.credentials)
    if claims is None:
        log.debug("Authentication failed: invalid or expired token")
        raise _unauthenticated()

    result = await db.execute(select(User).where(User.id == claims.subject_id))
    user = result.scalar_one_or_none()

    if user is None:
        log.debug("Authentication failed: user %s not found", claims.subject_id)
        raise _unauthenticated()

    if user.email != claims.email:
        log.debug("Authentication failed: token email mismatch for user %s", user.id)
        raise _unauthenticated()

    roles = await get_user_role_names(db, user.id)
    return AuthenticatedSubject(id=user.id, email=user.email, roles=roles)
