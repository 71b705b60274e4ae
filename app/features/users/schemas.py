"""
Pydantic schemas for user-related requests and responses.
"""
import re
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator


class SignupRequest(BaseModel):
    """Schema for creating a new account."""
    email: EmailStr
    password: str = Field(..., max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        """Emails are compared lower-cased and trimmed."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        """Minimum 8 characters, at least one letter and one number."""
        if len(v) < 8 or not re.search(r"[A-Za-z]", v) or not re.search(r"[0-9]", v):
            raise ValueError("Password must be at least 8 characters and contain both letters and numbers")
        return v


class LoginRequest(BaseModel):
    """
    Schema for logging in.

    The email is not format-checked here: a malformed address must fail the
    same way as an unknown one.
    """
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserPublic(BaseModel):
    """Account information safe to return to its owner."""
    id: str
    email: str

    model_config = {"from_attributes": True}


class UserCreated(UserPublic):
    created_at: datetime


class SignupResponse(BaseModel):
    message: str
    user: UserCreated


class LoginResponse(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"
    user: UserPublic


class CurrentUser(BaseModel):
    """The authenticated subject and its current role names."""
    id: str
    email: str
    roles: list[str] = []


class CurrentUserResponse(BaseModel):
    user: CurrentUser


class PermissionAllowedResponse(BaseModel):
    allowed: bool


class UserWithRoles(BaseModel):
    """Admin listing entry."""
    id: str
    email: str
    created_at: datetime
    roles: list[str] = []


class UserListResponse(BaseModel):
    users: list[UserWithRoles]


class RoleCountsResponse(BaseModel):
    counts: dict[str, int]


class AssignRoleToUser(BaseModel):
    """Schema for assigning a role to a user."""
    role_id: str = Field(..., min_length=1, description="Role ID")


class MessageResponse(BaseModel):
    message: str
