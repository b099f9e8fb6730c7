"""
Pydantic schemas for roles.
"""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from tenant_access.features.permissions.schemas import PermissionEntry, PermissionEntryResponse
from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.roles.models import RoleType
from tenant_access.features.users.models import UserType


def check_slug(v: str) -> str:
    v = v.strip().lower()
    if not v.replace("_", "").replace("-", "").isalnum():
        raise ValueError("Slug must contain only alphanumeric characters, underscores, and hyphens")
    return v


class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name, unique within the tenant")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    slug: str = Field(..., min_length=1, max_length=100, description="Slug, unique within the tenant")
    permissions: List[PermissionEntry] = []
    for_user_types: List[UserType] = []
    level: int = Field(1, ge=0, le=100)
    tenant_id: Optional[str] = Field(None, description="Target tenant (operators only; ignored for tenant users)")
    system: bool = Field(False, description="Create a system-wide role (operators only)")

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        return check_slug(v)


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[PermissionEntry]] = None
    for_user_types: Optional[List[UserType]] = None
    level: Optional[int] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    slug: str
    tenant_id: Optional[str]
    role_type: RoleType
    permissions: List[PermissionEntryResponse] = []
    for_user_types: List[UserType] = []
    level: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("permissions", mode="before")
    @classmethod
    def normalize_permissions(cls, v: Any) -> Any:
        if isinstance(v, list) and all(isinstance(e, dict) for e in v):
            return PermissionTable.from_entries(v).to_entries()
        return v


class RoleListResponse(BaseModel):
    """Schema for paginated role list."""
    items: List[RoleResponse]
    total: int
    page: int
    page_size: int
    pages: int
