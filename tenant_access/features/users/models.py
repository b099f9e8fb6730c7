"""
User (principal) model and user types.
"""
from datetime import datetime
from typing import Any, Dict, List
import enum
from sqlalchemy import String, Boolean, ForeignKey, Table, Column, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from tenant_access.core.database.base import Base, TimestampMixin, generate_ulid


class UserType(str, enum.Enum):
    """Principal classes. SAAS_* users are operators, exempt from tenant scoping."""
    SAAS_OWNER = "SAAS_OWNER"
    SAAS_ADMIN = "SAAS_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    TENANT_MANAGER = "TENANT_MANAGER"
    TENANT_USER = "TENANT_USER"


OPERATOR_USER_TYPES = frozenset({UserType.SAAS_OWNER, UserType.SAAS_ADMIN})

# Higher number = more privileges
USER_TYPE_HIERARCHY = {
    UserType.SAAS_OWNER: 100,
    UserType.SAAS_ADMIN: 90,
    UserType.TENANT_ADMIN: 50,
    UserType.TENANT_MANAGER: 30,
    UserType.TENANT_USER: 10,
}


# Direct role assignments. role_id deliberately has no foreign key: deleting a
# role leaves the reference dangling and the resolver skips it.
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), primary_key=True, index=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=datetime.now),
)


class User(Base, TimestampMixin):
    """
    A principal whose access is evaluated.

    Operators (SAAS_OWNER, SAAS_ADMIN) have no tenant; every other user type
    belongs to exactly one tenant.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    user_type: Mapped[UserType] = mapped_column(SQLEnum(UserType), nullable=False, index=True)
    tenant_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # [{"feature": "lead_management", "actions": ["read"]}, ...]
    custom_permissions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_operator(self) -> bool:
        return self.user_type in OPERATOR_USER_TYPES

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, type={self.user_type})>"
