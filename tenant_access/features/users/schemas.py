"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from typing import Any, List
from pydantic import BaseModel, EmailStr, Field, field_validator

from tenant_access.features.permissions.schemas import PermissionEntry, PermissionEntryResponse
from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.users.models import UserType


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserCreate(UserBase):
    """Schema for creating a new user."""
    user_type: UserType = UserType.TENANT_USER
    tenant_id: str | None = Field(None, description="Target tenant (operators only; ignored for tenant users)")
    custom_permissions: List[PermissionEntry] = []


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    is_active: bool | None = None


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    user_type: UserType
    tenant_id: str | None = None
    custom_permissions: List[PermissionEntryResponse] = []
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("custom_permissions", mode="before")
    @classmethod
    def normalize_permissions(cls, v: Any) -> Any:
        if isinstance(v, list) and all(isinstance(e, dict) for e in v):
            return PermissionTable.from_entries(v).to_entries()
        return v


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    user_type: UserType
    tenant_id: str | None = None

    model_config = {"from_attributes": True}


class UserRolesRequest(BaseModel):
    """Role ids to assign to or remove from a user."""
    roles: List[str] = Field(..., description="Role IDs")


class UserRolesResponse(BaseModel):
    user_id: str
    role_ids: List[str]


class CustomPermissionsRequest(BaseModel):
    """Custom permission entries to merge into (or replace) a user's own grants."""
    permissions: List[PermissionEntry] = []
