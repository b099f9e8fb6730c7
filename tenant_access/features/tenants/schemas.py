"""
Pydantic schemas for tenant-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr, field_validator

from tenant_access.features.roles.schemas import check_slug


class TenantBase(BaseModel):
    """Base tenant schema."""
    name: str = Field(..., min_length=1, max_length=255)
    contact_email: EmailStr | None = None


class TenantCreate(TenantBase):
    """Schema for onboarding a new tenant."""
    slug: str = Field(..., min_length=1, max_length=100, description="Unique tenant slug")
    seed_default_roles: bool = Field(default=True, description="Create the default Admin / Manager / User roles")

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        return check_slug(v)


class TenantUpdate(BaseModel):
    """Schema for updating tenant information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    contact_email: EmailStr | None = None
    is_active: bool | None = None


class TenantResponse(TenantBase):
    """Schema for tenant responses."""
    id: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
