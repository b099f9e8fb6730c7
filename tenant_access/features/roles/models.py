"""
Role model.

Roles bundle permission entries and are either system-wide (tenant_id null,
role_type system) or owned by one tenant (role_type custom).
"""
from typing import Any, Dict, List
import enum
from sqlalchemy import String, Boolean, ForeignKey, Integer, JSON, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from tenant_access.core.database.base import Base, TimestampMixin, generate_ulid


class RoleType(str, enum.Enum):
    SYSTEM = "system"
    CUSTOM = "custom"


SYSTEM_SCOPE = ""


def tenant_scope(tenant_id: str | None) -> str:
    """Non-null uniqueness key for a role's tenant (NULLs never collide in SQL)."""
    return tenant_id or SYSTEM_SCOPE


class Role(Base, TimestampMixin):
    """
    A named bundle of permission entries.

    Examples: Viewer, Editor, Tenant Admin
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_scope", "slug", name="uq_roles_tenant_slug"),
        UniqueConstraint("tenant_scope", "name", name="uq_roles_tenant_name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # null = system-wide role
    tenant_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    tenant_scope: Mapped[str] = mapped_column(String(26), nullable=False, default=SYSTEM_SCOPE)

    role_type: Mapped[RoleType] = mapped_column(SQLEnum(RoleType), nullable=False, default=RoleType.CUSTOM)

    # [{"feature": "lead_management", "actions": ["read", "update"]}, ...]
    permissions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    # Advisory: which user types this role is meant for
    for_user_types: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    # Higher number = more privileges
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_system(self) -> bool:
        return self.role_type == RoleType.SYSTEM

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, slug={self.slug!r}, tenant_id={self.tenant_id}, type={self.role_type})>"
