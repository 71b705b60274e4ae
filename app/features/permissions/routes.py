"""
Permission management API routes.

Provides admin endpoints for managing permissions, roles, and the mapping
between them.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, delete, and_, insert, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.core import config
from app.core.database.engine import get_db
from app.features.users.dependencies import AuthenticatedSubject, get_current_user
from app.features.permissions.models import (
    Permission,
    Role,
    AuditLog,
    role_permissions,
)
from app.features.permissions.schemas import (
    PermissionCreate,
    PermissionUpdate,
    PermissionResponse,
    PermissionRolesResponse,
    PermissionRef,
    RoleRef,
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    RoleWithPermissions,
    RolePermissionsResponse,
    AssignPermissionToRole,
    ReplaceRolePermissions,
    RolePermissionsChange,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    create_audit_log,
    get_current_admin,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def get_role_or_404(db: AsyncSession, role_id: str) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalars().first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


async def get_permission_or_404(db: AsyncSession, permission_id: str) -> Permission:
    result = await db.execute(select(Permission).where(Permission.id == permission_id))
    permission = result.scalars().first()
    if not permission:
        raise HTTPException(status_code=404, detail="Permission not found")
    return permission


async def get_role_permission_ids(db: AsyncSession, role_id: str) -> set[str]:
    result = await db.execute(
        select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
    )
    return set(result.scalars().all())


# ============================================================================
# Permission Routes
# ============================================================================

@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Create a new permission (admin only)."""
    db_permission = Permission(**permission.model_dump())
    db.add(db_permission)
    try:
        await db.flush()
        await create_audit_log(
            db,
            user_id=current_user.id,
            action="create",
            resource_type="permission",
            resource_id=db_permission.id,
            details=permission.model_dump(),
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Permission name already exists"
        )

    await db.refresh(db_permission)
    return db_permission


@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """List all permissions, newest first (admin only)."""
    stmt = select(Permission).order_by(Permission.created_at.desc(), Permission.name).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Get a specific permission by ID (admin only)."""
    return await get_permission_or_404(db, permission_id)


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    permission_update: PermissionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Rename a permission or change its description (admin only)."""
    db_permission = await get_permission_or_404(db, permission_id)

    update_data = permission_update.model_dump()
    for key, value in update_data.items():
        setattr(db_permission, key, value)

    try:
        await create_audit_log(
            db,
            user_id=current_user.id,
            action="update",
            resource_type="permission",
            resource_id=permission_id,
            details=update_data,
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Permission name already exists"
        )

    await db.refresh(db_permission)
    return db_permission


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Delete a permission and its role mappings (admin only)."""
    db_permission = await get_permission_or_404(db, permission_id)

    permission_name = db_permission.name
    # The loaded roles collection makes the ORM drop the role_permissions rows too
    await db.delete(db_permission)
    await create_audit_log(
        db,
        user_id=current_user.id,
        action="delete",
        resource_type="permission",
        resource_id=permission_id,
        details={"name": permission_name},
        request=request,
    )
    await db.commit()

    return None


@router.get("/permissions/{permission_id}/roles", response_model=PermissionRolesResponse)
async def list_permission_roles(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_user)
):
    """List the roles that carry a permission (any authenticated user)."""
    permission = await get_permission_or_404(db, permission_id)

    stmt = (
        select(Role)
        .join(role_permissions, role_permissions.c.role_id == Role.id)
        .where(role_permissions.c.permission_id == permission_id)
        .order_by(Role.name)
    )
    result = await db.execute(stmt)

    return PermissionRolesResponse(
        permission=PermissionRef.model_validate(permission),
        roles=[RoleResponse.model_validate(r) for r in result.scalars().all()]
    )


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Create a new role (admin only)."""
    db_role = Role(**role.model_dump())
    db.add(db_role)
    try:
        await db.flush()
        await create_audit_log(
            db,
            user_id=current_user.id,
            action="create",
            resource_type="role",
            resource_id=db_role.id,
            details=role.model_dump(),
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role name already exists"
        )

    await db.refresh(db_role)
    return db_role


@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """List roles with their permissions (admin only)."""
    stmt = (
        select(Role)
        .options(selectinload(Role.permissions))
        .order_by(Role.created_at.desc(), Role.name)
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Get a specific role with its permissions (admin only)."""
    stmt = select(Role).where(Role.id == role_id).options(selectinload(Role.permissions))
    result = await db.execute(stmt)
    role = result.scalars().first()

    if not role:
        raise HTTPException(status_code=404, detail="Role not found")

    return role


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Rename a role or change its description (admin only)."""
    db_role = await get_role_or_404(db, role_id)

    if db_role.name == config.ADMIN_ROLE and role_update.name != config.ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The admin role cannot be renamed"
        )

    update_data = role_update.model_dump()
    for key, value in update_data.items():
        setattr(db_role, key, value)

    try:
        await create_audit_log(
            db,
            user_id=current_user.id,
            action="update",
            resource_type="role",
            resource_id=role_id,
            details=update_data,
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role name already exists"
        )

    await db.refresh(db_role)
    return db_role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Delete a role together with its user and permission assignments (admin only)."""
    db_role = await get_role_or_404(db, role_id)

    if db_role.name == config.ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The admin role cannot be deleted"
        )

    role_name = db_role.name
    await db.delete(db_role)
    await create_audit_log(
        db,
        user_id=current_user.id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        details={"name": role_name},
        request=request,
    )
    await db.commit()

    return None


# ============================================================================
# Role-Permission Mapping Routes
# ============================================================================

@router.get("/roles/{role_id}/permissions", response_model=RolePermissionsResponse)
async def list_role_permissions(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """List the permissions mapped to a role (admin only)."""
    role = await get_role_or_404(db, role_id)

    stmt = (
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(Permission.name)
    )
    result = await db.execute(stmt)

    return RolePermissionsResponse(
        role=RoleRef.model_validate(role),
        permissions=[PermissionResponse.model_validate(p) for p in result.scalars().all()]
    )


@router.post("/roles/{role_id}/permissions", status_code=status.HTTP_201_CREATED)
async def assign_permission_to_role(
    role_id: str,
    assignment: AssignPermissionToRole,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Assign a permission to a role (admin only)."""
    role = await get_role_or_404(db, role_id)
    permission = await get_permission_or_404(db, assignment.permission_id)

    # Check if already assigned
    check_stmt = select(role_permissions).where(
        and_(
            role_permissions.c.role_id == role_id,
            role_permissions.c.permission_id == assignment.permission_id
        )
    )
    check_result = await db.execute(check_stmt)
    if check_result.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Permission already assigned to role"
        )

    try:
        await db.execute(insert(role_permissions).values(role_id=role_id, permission_id=assignment.permission_id))
        await create_audit_log(
            db,
            user_id=current_user.id,
            action="assign_permission",
            resource_type="role",
            resource_id=role_id,
            details={"permission_id": assignment.permission_id, "permission_name": permission.name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent identical grant
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Permission already assigned to role"
        )

    return {"message": f"Permission '{permission.name}' assigned to role '{role.name}'"}


@router.put("/roles/{role_id}/permissions", response_model=RolePermissionsChange)
async def replace_role_permissions(
    role_id: str,
    replacement: ReplaceRolePermissions,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """
    Replace the full permission set of a role (admin only).

    Adds and removals are applied in one transaction: either the role ends up
    with exactly the requested set, or nothing changes.
    """
    await get_role_or_404(db, role_id)

    wanted = set(replacement.permission_ids)
    if wanted:
        found = await db.execute(select(Permission.id).where(Permission.id.in_(wanted)))
        missing = wanted - set(found.scalars().all())
        if missing:
            raise HTTPException(status_code=404, detail="Permission not found")

    current = await get_role_permission_ids(db, role_id)

    to_add = sorted(wanted - current)
    to_remove = sorted(current - wanted)

    try:
        if to_add:
            await db.execute(
                insert(role_permissions),
                [{"role_id": role_id, "permission_id": pid} for pid in to_add]
            )
        if to_remove:
            await db.execute(
                delete(role_permissions).where(
                    and_(
                        role_permissions.c.role_id == role_id,
                        role_permissions.c.permission_id.in_(to_remove)
                    )
                )
            )

        if to_add or to_remove:
            await create_audit_log(
                db,
                user_id=current_user.id,
                action="replace_permissions",
                resource_type="role",
                resource_id=role_id,
                details={"added": to_add, "removed": to_remove},
                request=request,
            )
        await db.commit()
    except IntegrityError:
        # A concurrent change mapped one of the permissions first
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role permissions changed concurrently, retry"
        )

    return RolePermissionsChange(added=to_add, removed=to_remove)


@router.delete("/roles/{role_id}/permissions/{permission_id}")
async def remove_permission_from_role(
    role_id: str,
    permission_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """Remove a permission from a role (admin only)."""
    mapping_filter = and_(
        role_permissions.c.role_id == role_id,
        role_permissions.c.permission_id == permission_id
    )

    # Check if assignment exists first
    check_result = await db.execute(select(role_permissions).where(mapping_filter))
    if not check_result.first():
        raise HTTPException(status_code=404, detail="Role or permission mapping not found")

    await db.execute(delete(role_permissions).where(mapping_filter))
    await create_audit_log(
        db,
        user_id=current_user.id,
        action="remove_permission",
        resource_type="role",
        resource_id=role_id,
        details={"permission_id": permission_id},
        request=request,
    )
    await db.commit()

    return {"message": "Permission removed from role"}


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedSubject = Depends(get_current_admin)
):
    """List audit logs with optional filtering (admin only)."""
    stmt = select(AuditLog)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
