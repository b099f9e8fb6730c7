"""
Tenant model.

A tenant is the isolation boundary: every tenant-scoped user, role and group
carries a tenant_id, and non-operator principals only reach resources whose
tenant_id equals their own.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from tenant_access.core.database.base import Base, TimestampMixin, generate_ulid


class Tenant(Base, TimestampMixin):
    """An organization using the service."""
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug!r})>"
