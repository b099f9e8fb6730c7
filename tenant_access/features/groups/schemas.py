"""
Pydantic schemas for groups and their membership / role assignments.
"""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from tenant_access.features.permissions.schemas import PermissionEntry, PermissionEntryResponse
from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.roles.schemas import check_slug


class GroupBase(BaseModel):
    """Base group schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Group name")
    description: Optional[str] = Field(None, max_length=1000, description="Group description")


class GroupCreate(GroupBase):
    """Schema for creating a new group."""
    slug: str = Field(..., min_length=1, max_length=100, description="Slug, unique within the tenant")
    parent_group_id: Optional[str] = Field(None, description="Organizational parent (no permission inheritance)")
    group_permissions: List[PermissionEntry] = []
    tenant_id: Optional[str] = Field(None, description="Target tenant (operators only; ignored for tenant users)")

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        return check_slug(v)


class GroupUpdate(BaseModel):
    """Schema for updating a group."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    parent_group_id: Optional[str] = None
    group_permissions: Optional[List[PermissionEntry]] = None
    is_active: Optional[bool] = None


class GroupResponse(GroupBase):
    """Schema for group response."""
    id: str
    slug: str
    tenant_id: str
    parent_group_id: Optional[str]
    group_permissions: List[PermissionEntryResponse] = []
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("group_permissions", mode="before")
    @classmethod
    def normalize_permissions(cls, v: Any) -> Any:
        if isinstance(v, list) and all(isinstance(e, dict) for e in v):
            return PermissionTable.from_entries(v).to_entries()
        return v


class GroupDetail(GroupResponse):
    """Group with its member and role id sets."""
    member_ids: List[str] = []
    role_ids: List[str] = []


class GroupMembersRequest(BaseModel):
    """User ids to add to or remove from a group."""
    members: List[str] = Field(..., description="User IDs")


class GroupRolesRequest(BaseModel):
    """Role ids to assign to or remove from a group."""
    roles: List[str] = Field(..., description="Role IDs")


class GroupListResponse(BaseModel):
    """Schema for paginated group list."""
    items: List[GroupResponse]
    total: int
    page: int
    page_size: int
    pages: int
