"""
User feature routes (administration).
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import and_, delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.schemas import (
    AssignRoleToUser,
    MessageResponse,
    RoleCountsResponse,
    UserListResponse,
    UserWithRoles,
)
from app.features.users.dependencies import AuthenticatedSubject
from app.features.permissions.models import Role, user_roles
from app.features.permissions.dependencies import (
    create_audit_log,
    get_current_admin,
    require_permission,
)
from app.features.editorials.models import Editorial
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])

EDITOR_ROLE = "editor"


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user


async def get_role_by_name(db: AsyncSession, name: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalars().first()


async def count_admins(db: AsyncSession) -> int:
    """
    Number of admin role holders.

    The admin assignment rows stay locked until the transaction ends, so two
    admins demoting or deleting each other concurrently cannot both pass the
    last-admin check (SQLite ignores FOR UPDATE; its writers are serialized anyway).
    """
    result = await db.execute(
        select(user_roles.c.user_id)
        .join(Role, Role.id == user_roles.c.role_id)
        .where(Role.name == config.ADMIN_ROLE)
        .with_for_update(of=user_roles)
    )
    return len(result.all())


async def user_has_role(db: AsyncSession, user_id: str, role_id: str) -> bool:
    result = await db.execute(
        select(user_roles).where(
            and_(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id)
        )
    )
    return result.first() is not None


@router.get("", response_model=UserListResponse)
async def list_users(
    admin: Annotated[AuthenticatedSubject, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 100
):
    """List users with their role names, newest first (admin only)."""
    result = await db.execute(
        select(User)
        .order_by(User.created_at.desc(), User.email)
        .offset(skip)
        .limit(limit)
    )
    users = result.scalars().all()
    return UserListResponse(users=[
        UserWithRoles(
            id=u.id,
            email=u.email,
            created_at=u.created_at,
            roles=sorted(r.name for r in u.roles),
        )
        for u in users
    ])


@router.get("/summary", response_model=RoleCountsResponse)
async def role_summary(
    admin: Annotated[AuthenticatedSubject, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Number of users holding each role (admin only)."""
    result = await db.execute(
        select(Role.name, func.count(user_roles.c.user_id))
        .outerjoin(user_roles, user_roles.c.role_id == Role.id)
        .group_by(Role.name)
    )
    counts = {name: count for name, count in result.all()}

    # Canonical roles always appear, even when absent
    for name in (config.ADMIN_ROLE, EDITOR_ROLE, "viewer"):
        counts.setdefault(name, 0)

    return RoleCountsResponse(counts=counts)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    request: Request,
    admin: Annotated[AuthenticatedSubject, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Delete a user, their role assignments, and their editorials (admin only).

    Admins cannot delete themselves, and the last admin cannot be deleted.
    """
    if user_id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete yourself"
        )

    user = await get_user_or_404(db, user_id)

    admin_role = await get_role_by_name(db, config.ADMIN_ROLE)
    if admin_role and await user_has_role(db, user_id, admin_role.id):
        if await count_admins(db) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete the last admin"
            )

    email = user.email
    await db.execute(delete(Editorial).where(Editorial.author_id == user_id))
    # The loaded roles collection makes the ORM drop the user_roles rows too
    await db.delete(user)
    await create_audit_log(
        db,
        user_id=admin.id,
        action="delete",
        resource_type="user",
        resource_id=user_id,
        details={"email": email},
        request=request,
    )
    await db.commit()

    return MessageResponse(message="User deleted")


@router.post("/{user_id}/roles", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def assign_role_to_user(
    user_id: str,
    assignment: AssignRoleToUser,
    request: Request,
    admin: Annotated[AuthenticatedSubject, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a role to a user (admin only)."""
    await get_user_or_404(db, user_id)
    result = await db.execute(select(Role).where(Role.id == assignment.role_id))
    role = result.scalars().first()
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")

    if await user_has_role(db, user_id, role.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role already assigned to user"
        )

    try:
        await db.execute(insert(user_roles).values(user_id=user_id, role_id=role.id))
        await create_audit_log(
            db,
            user_id=admin.id,
            action="assign_role",
            resource_type="user",
            resource_id=user_id,
            details={"role_id": role.id, "role_name": role.name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role already assigned to user"
        )

    return MessageResponse(message=f"Role '{role.name}' assigned to user")


@router.delete("/{user_id}/roles/{role_id}", response_model=MessageResponse)
async def revoke_role_from_user(
    user_id: str,
    role_id: str,
    request: Request,
    admin: Annotated[AuthenticatedSubject, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Remove a role from a user (admin only).

    The admin role cannot be taken from yourself or from the last admin.
    """
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalars().first()
    if role is None or not await user_has_role(db, user_id, role_id):
        raise HTTPException(status_code=404, detail="Role assignment not found")

    if role.name == config.ADMIN_ROLE:
        if user_id == admin.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot remove your own admin role"
            )
        if await count_admins(db) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot remove the last admin"
            )

    await db.execute(
        delete(user_roles).where(
            and_(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id)
        )
    )
    await create_audit_log(
        db,
        user_id=admin.id,
        action="revoke_role",
        resource_type="user",
        resource_id=user_id,
        details={"role_id": role_id, "role_name": role.name},
        request=request,
    )
    await db.commit()

    return MessageResponse(message=f"Role '{role.name}' removed from user")


@router.post("/{user_id}/grant-editor", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def grant_editor(
    user_id: str,
    request: Request,
    response: Response,
    actor: Annotated[AuthenticatedSubject, Depends(require_permission("user:grant:editor"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Give a user the editor role (requires user:grant:editor)."""
    editor_role = await get_role_by_name(db, EDITOR_ROLE)
    if editor_role is None:
        raise HTTPException(status_code=404, detail="Editor role not found")
    await get_user_or_404(db, user_id)

    if await user_has_role(db, user_id, editor_role.id):
        response.status_code = status.HTTP_200_OK
        return MessageResponse(message="User already has editor role")

    try:
        await db.execute(insert(user_roles).values(user_id=user_id, role_id=editor_role.id))
        await create_audit_log(
            db,
            user_id=actor.id,
            action="assign_role",
            resource_type="user",
            resource_id=user_id,
            details={"role_id": editor_role.id, "role_name": EDITOR_ROLE},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        # Granted by a concurrent request in the meantime
        await db.rollback()
        response.status_code = status.HTTP_200_OK
        return MessageResponse(message="User already has editor role")

    return MessageResponse(message="Editor role granted")


@router.post("/{user_id}/revoke-editor", response_model=MessageResponse)
async def revoke_editor(
    user_id: str,
    request: Request,
    actor: Annotated[AuthenticatedSubject, Depends(require_permission("user:revoke:editor"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Take the editor role from a user (requires user:revoke:editor)."""
    editor_role = await get_role_by_name(db, EDITOR_ROLE)
    if editor_role is None:
        raise HTTPException(status_code=404, detail="Editor role not found")

    if not await user_has_role(db, user_id, editor_role.id):
        return MessageResponse(message="User did not have editor role")

    await db.execute(
        delete(user_roles).where(
            and_(user_roles.c.user_id == user_id, user_roles.c.role_id == editor_role.id)
        )
    )
    await create_audit_log(
        db,
        user_id=actor.id,
        action="revoke_role",
        resource_type="user",
        resource_id=user_id,
        details={"role_id": editor_role.id, "role_name": EDITOR_ROLE},
        request=request,
    )
    await db.commit()

    return MessageResponse(message="Editor role revoked")
