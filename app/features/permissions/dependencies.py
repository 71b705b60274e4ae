"""
Permission checking utilities and dependencies for RBAC.

Implements:
- Permission resolution (user -> roles -> permissions) straight from the database
- Admin superuser bypass
- Ownership-scoped checks ("edit own" vs "edit any")
- FastAPI dependencies for route protection
- Audit logging helpers

Nothing here caches. Every check re-reads the role/permission graph, so a grant
or revoke takes effect on the user's very next request.
"""
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.users.dependencies import AuthenticatedSubject, get_current_user
from app.features.permissions.models import (
    AuditLog,
    Permission,
    Role,
    role_permissions,
    user_roles,
)
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Permission Resolution
# ============================================================================

@dataclass(frozen=True)
class EffectivePermissions:
    """Role names and the union of their permission names for one user."""
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return config.ADMIN_ROLE in self.roles

    def allows(self, permission_name: str) -> bool:
        """Exact-name match; admin passes everything."""
        return self.is_admin or permission_name in self.permissions


async def resolve_user_permissions(db: AsyncSession, user_id: str) -> EffectivePermissions:
    """
    Get the roles and effective permissions a user has.

    One query walks user_roles -> roles -> role_permissions -> permissions.
    The permission side is outer-joined so roles without any permission rows
    (admin, typically) still show up.

    Returns:
        EffectivePermissions with both sets
    """
    stmt = (
        select(Role.name, Permission.name)
        .select_from(user_roles)
        .join(Role, Role.id == user_roles.c.role_id)
        .outerjoin(role_permissions, role_permissions.c.role_id == Role.id)
        .outerjoin(Permission, Permission.id == role_permissions.c.permission_id)
        .where(user_roles.c.user_id == user_id)
    )
    result = await db.execute(stmt)

    roles: set[str] = set()
    permissions: set[str] = set()
    for role_name, permission_name in result.all():
        roles.add(role_name)
        if permission_name is not None:
            permissions.add(permission_name)

    return EffectivePermissions(roles=frozenset(roles), permissions=frozenset(permissions))


async def has_permission(db: AsyncSession, user_id: str, permission_name: str) -> bool:
    """
    Check if a user holds a permission.

    True when the user has the admin role or when any of their roles carries
    exactly this permission name. No wildcard or prefix expansion.
    """
    effective = await resolve_user_permissions(db, user_id)
    allowed = effective.allows(permission_name)
    log.debug("User %s %s permission %s", user_id, "granted" if allowed else "denied", permission_name)
    return allowed


async def is_admin(db: AsyncSession, user_id: str) -> bool:
    """Check if a user holds the admin role."""
    effective = await resolve_user_permissions(db, user_id)
    return effective.is_admin


async def can_act_on(
    db: AsyncSession,
    user_id: str,
    owner_id: Optional[str],
    any_permission: str,
    own_permission: str,
) -> bool:
    """
    Ownership-scoped check used for editing or deleting owned resources.

    Order:
    1. admin role -> allow, ownership is irrelevant
    2. the "any" permission -> allow, ownership is irrelevant
    3. the "own" permission and the resource belongs to the user -> allow
    4. deny

    Args:
        db: Database session
        user_id: Acting user
        owner_id: The resource's owner (author) id
        any_permission: e.g. "journal:edit:any"
        own_permission: e.g. "journal:edit:own"
    """
    effective = await resolve_user_permissions(db, user_id)

    if effective.is_admin:
        return True
    if any_permission in effective.permissions:
        return True
    if own_permission in effective.permissions and owner_id is not None and owner_id == user_id:
        return True

    log.debug(
        f"User {user_id} denied {any_permission}/{own_permission} on resource owned by {owner_id}"
    )
    return False


# ============================================================================
# Enforcement
# ============================================================================

async def enforce_permission(db: AsyncSession, user_id: str, permission_name: str) -> None:
    """
    Raise 403 unless the user holds the permission.

    Raises:
        HTTPException: 403 Forbidden: missing permission
    """
    if not await has_permission(db, user_id, permission_name):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: missing permission"
        )


async def enforce_admin(db: AsyncSession, user_id: str) -> None:
    """Raise 403 unless the user holds the admin role."""
    if not await is_admin(db, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: admin only"
        )


async def enforce_owned_action(
    db: AsyncSession,
    user_id: str,
    owner_id: Optional[str],
    any_permission: str,
    own_permission: str,
) -> None:
    """Raise 403 unless can_act_on() allows the action."""
    if not await can_act_on(db, user_id, owner_id, any_permission, own_permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden"
        )


# ============================================================================
# FastAPI Dependencies
# ============================================================================

async def get_current_admin(
    user: Annotated[AuthenticatedSubject, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> AuthenticatedSubject:
    """
    Require the admin role.

    Usage:
        @router.delete("/roles/{role_id}")
        async def delete_role(
            role_id: str,
            admin: AuthenticatedSubject = Depends(get_current_admin)
        ):
            # Only admins can access this endpoint
            ...
    """
    await enforce_admin(db, user.id)
    return user


def require_permission(permission_name: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/editorials")
        async def create_editorial(
            user: AuthenticatedSubject = Depends(require_permission("journal:create"))
        ):
            # User has permission to create editorials
            pass

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: AuthenticatedSubject = Depends(get_current_user)
    ) -> AuthenticatedSubject:
        await enforce_permission(db, current_user.id, permission_name)
        return current_user

    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current transaction.

    The caller commits, so the entry lands together with the change it describes.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "assign_role")
        resource_type: Type of resource (e.g., "role", "permission", "user")
        resource_id: ID of the resource
        details: Additional details
        request: Incoming request, for client IP and user agent
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )
    db.add(audit_log)

    log.info(f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id}")

    return audit_log
