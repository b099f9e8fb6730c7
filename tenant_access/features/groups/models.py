"""
Group model and its membership / role-assignment tables.

A group collects members, assigned roles and its own permission entries.
parent_group_id records organizational nesting only; permissions never flow
from a parent group to its children.
"""
from datetime import datetime
from typing import Any, Dict, List
from sqlalchemy import String, Boolean, ForeignKey, Table, Column, JSON, Text, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tenant_access.core.database.base import Base, TimestampMixin, generate_ulid


group_members = Table(
    "group_members",
    Base.metadata,
    Column("group_id", String(26), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=datetime.now),
)

# role_id has no foreign key so deleting a role never cascades into groups
group_roles = Table(
    "group_roles",
    Base.metadata,
    Column("group_id", String(26), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), primary_key=True, index=True),
)


class Group(Base, TimestampMixin):
    """
    Tenant-scoped group of users sharing roles.

    Examples: sales_team, support_tier_1
    """
    __tablename__ = "groups"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_groups_tenant_slug"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    parent_group_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("groups.id", ondelete="SET NULL"),
        nullable=True
    )

    # Direct group-level entries, same shape as role permissions
    group_permissions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, slug={self.slug!r}, tenant_id={self.tenant_id})>"
