"""
Pydantic schemas for permission management.

Request and response models for permissions, roles, mappings, and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


def _required_name(v: str, label: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError(f"{label} name is required")
    return v


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    name: str = Field(..., max_length=100, description="Unique permission name, e.g. 'journal:edit:own'")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""

    @field_validator('name')
    @classmethod
    def name_required(cls, v: str) -> str:
        v = _required_name(v, "Permission")
        if not v.replace('_', '').replace('.', '').replace(':', '').replace('-', '').isalnum():
            raise ValueError('Permission name must contain only alphanumeric characters, underscores, dots, hyphens, and colons')
        return v


class PermissionUpdate(PermissionCreate):
    """Schema for updating a permission (name and description are both replaced)."""


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""

    @field_validator('name')
    @classmethod
    def name_required(cls, v: str) -> str:
        v = _required_name(v, "Role")
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v


class RoleUpdate(RoleCreate):
    """Schema for renaming a role."""


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []

    model_config = ConfigDict(from_attributes=True)


class RoleRef(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class PermissionRef(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class RolePermissionsResponse(BaseModel):
    """Permissions mapped to one role."""
    role: RoleRef
    permissions: List[PermissionResponse] = []


class PermissionRolesResponse(BaseModel):
    """Roles carrying one permission."""
    permission: PermissionRef
    roles: List[RoleResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignPermissionToRole(BaseModel):
    """Schema for assigning a permission to a role."""
    permission_id: str = Field(..., min_length=1, description="Permission ID")


class ReplaceRolePermissions(BaseModel):
    """Schema for replacing the full permission set of a role."""
    permission_ids: List[str] = Field(default_factory=list, description="Permission IDs the role should end up with")


class RolePermissionsChange(BaseModel):
    """Result of a batch replace."""
    added: List[str] = []
    removed: List[str] = []


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
