"""
Tenant routes.

Onboarding and updating tenants is reserved to operators; tenant users can
only read their own tenant.
"""
from typing import Annotated, List
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.audit.service import create_audit_log
from tenant_access.features.permissions.dependencies import ensure_tenant_access, get_current_principal
from tenant_access.features.permissions.resolver import Principal
from tenant_access.features.tenants import store as tenant_store
from tenant_access.features.tenants.schemas import TenantCreate, TenantResponse, TenantUpdate
from tenant_access.features.users.dependencies import get_current_operator
from tenant_access.features.users.models import User


router = APIRouter(tags=["tenants"])


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User, Depends(get_current_operator)]
):
    """Onboard a tenant and, by default, give it the default role set."""
    tenant = await tenant_store.create_tenant(
        db,
        name=body.name,
        slug=body.slug,
        contact_email=body.contact_email,
        seed_default_roles=body.seed_default_roles,
    )

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=operator.id,
        action="tenant.created",
        resource_type="tenant",
        resource_id=tenant.id,
        tenant_id=tenant.id,
        details=body.model_dump(mode="json"),
        request=request,
    )

    return tenant


@router.get("/", response_model=List[TenantResponse])
async def list_tenants(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(get_current_principal)],
    skip: int = 0,
    limit: int = 100
):
    """List tenants. Tenant users only see their own."""
    if principal.is_operator:
        return await tenant_store.list_tenants(db, skip=skip, limit=limit)
    if principal.tenant_id is None:
        return []
    return [await tenant_store.get_tenant(db, principal.tenant_id)]


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(get_current_principal)]
):
    """Get a tenant by ID."""
    ensure_tenant_access(principal, tenant_id)
    return await tenant_store.get_tenant(db, tenant_id)


@router.put("/{tenant_id}", response_model=TenantResponse)
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User, Depends(get_current_operator)]
):
    """Update a tenant (operators only)."""
    update_data = body.model_dump(exclude_unset=True)
    tenant = await tenant_store.update_tenant(db, tenant_id, update_data)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=operator.id,
        action="tenant.updated",
        resource_type="tenant",
        resource_id=tenant_id,
        tenant_id=tenant_id,
        details=body.model_dump(mode="json", exclude_unset=True),
        request=request,
    )

    return tenant
