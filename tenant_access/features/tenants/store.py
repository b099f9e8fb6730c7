"""
Tenant store.
"""
from typing import Any, Dict, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.errors import DuplicateSlug, NotFound
from tenant_access.features.roles.defaults import ensure_default_roles
from tenant_access.features.tenants.models import Tenant
from tenant_access.utils import get_logger


log = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "contact_email", "is_active"})


async def create_tenant(
    db: AsyncSession,
    *,
    name: str,
    slug: str,
    contact_email: Optional[str] = None,
    seed_default_roles: bool = False,
) -> Tenant:
    """
    Create a tenant, optionally with the default role set.

    The tenant and its default roles commit together: if seeding fails,
    the tenant is not created either.

    Raises:
        DuplicateSlug: slug is taken
    """
    slug = slug.strip().lower()
    tenant = Tenant(name=name.strip(), slug=slug, contact_email=contact_email, is_active=True)
    db.add(tenant)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateSlug(f"Tenant with slug '{slug}' already exists")

    try:
        if seed_default_roles:
            await ensure_default_roles(db, tenant.id, commit=False)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(tenant)
    log.info(f"Created tenant {tenant.id} ({slug})")
    return tenant


async def get_tenant(db: AsyncSession, tenant_id: str) -> Tenant:
    tenant = (await db.execute(select(Tenant).where(Tenant.id == tenant_id))).scalar_one_or_none()
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


async def list_tenants(db: AsyncSession, *, skip: int = 0, limit: int = 100) -> Sequence[Tenant]:
    stmt = select(Tenant).order_by(Tenant.created_at.desc()).offset(skip).limit(limit)
    return (await db.execute(stmt)).scalars().all()


async def update_tenant(db: AsyncSession, tenant_id: str, patch: Dict[str, Any]) -> Tenant:
    tenant = await get_tenant(db, tenant_id)
    changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}
    for key, value in changes.items():
        setattr(tenant, key, value)
    await db.commit()
    await db.refresh(tenant)
    log.info(f"Updated tenant {tenant.id}: {sorted(changes)}")
    return tenant
