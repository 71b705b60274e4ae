"""
Authentication routes: signup, login, current identity, permission check.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from slowapi.util import get_remote_address
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.users.auth import hash_password, issue_session_token, verify_login_password
from app.features.users.dependencies import AuthenticatedSubject, get_current_user
from app.features.users.models import User
from app.features.users.schemas import (
    CurrentUser,
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    PermissionAllowedResponse,
    SignupRequest,
    SignupResponse,
    UserCreated,
    UserPublic,
)
from app.features.permissions.dependencies import has_permission
from app.features.permissions.models import Role, user_roles
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def assign_default_role(db: AsyncSession, user: User) -> None:
    """
    Give a freshly created user the first default role that exists.

    Best-effort: runs in a savepoint and only logs on failure, so signup
    succeeds even without a default role.
    """
    try:
        async with db.begin_nested():
            role = None
            for name in config.DEFAULT_SIGNUP_ROLES:
                result = await db.execute(select(Role).where(Role.name == name))
                role = result.scalars().first()
                if role:
                    break

            if role is None:
                log.warning("Default signup role not found; user %s was created without a role", user.id)
                return

            await db.execute(insert(user_roles).values(user_id=user.id, role_id=role.id))
            log.info("Assigned role '%s' to new user %s", role.name, user.id)
    except SQLAlchemyError:
        log.exception("Failed to assign default role to new user %s", user.id)


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new account with email and password."""
    password_hash = await run_in_threadpool(hash_password, payload.password)

    user = User(email=payload.email, password_hash=password_hash)
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already exists"
        )

    await assign_default_role(db, user)
    await db.commit()
    await db.refresh(user)

    log.info("User %s signed up", user.id)
    return SignupResponse(
        message="User created successfully",
        user=UserCreated.model_validate(user),
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT, key_func=get_remote_address)
async def login(
    request: Request,
    payload: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Exchange email and password for a session token.

    Unknown email and wrong password produce the same 401 and take the same
    time (a bcrypt comparison runs either way).
    """
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    password_ok = await run_in_threadpool(
        verify_login_password, payload.password, user.password_hash if user else None
    )

    if user is None or not password_ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = issue_session_token(user.id, user.email)
    log.info("User %s logged in", user.id)
    return LoginResponse(
        message="Login successful",
        token=token,
        user=UserPublic.model_validate(user),
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    user: Annotated[AuthenticatedSubject, Depends(get_current_user)]
):
    """Return the authenticated user with their current role names."""
    return CurrentUserResponse(user=CurrentUser(id=user.id, email=user.email, roles=user.roles))


@router.get("/has", response_model=PermissionAllowedResponse)
async def check_permission(
    user: Annotated[AuthenticatedSubject, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    permission: Annotated[str, Query(min_length=1)]
):
    """Check whether the current user holds a permission."""
    allowed = await has_permission(db, user.id, permission)
    return PermissionAllowedResponse(allowed=allowed)
