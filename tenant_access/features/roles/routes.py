"""
Role API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.audit.service import create_audit_log
from tenant_access.features.permissions.dependencies import ensure_tenant_access, require_permission
from tenant_access.features.permissions.resolver import Principal
from tenant_access.features.permissions.schemas import entries_to_table
from tenant_access.features.permissions.tenant_guard import resolve_target_tenant
from tenant_access.features.roles import store as role_store
from tenant_access.features.roles.defaults import ensure_default_roles
from tenant_access.features.roles.models import Role, RoleType
from tenant_access.features.roles.schemas import RoleCreate, RoleListResponse, RoleResponse, RoleUpdate
from tenant_access.features.tenants.store import get_tenant


router = APIRouter()


def _ensure_visible(principal: Principal, role: Role) -> None:
    # System roles are visible to every tenant
    if not role.is_system:
        ensure_tenant_access(principal, role.tenant_id)


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "create"))
):
    """
    Create a role.

    Operators must name the tenant, or pass system=true for a system-wide
    role. Tenant users always create in their own tenant.
    """
    if role.system:
        if not principal.is_operator:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only operators can create system roles"
            )
        tenant_id, role_type = None, RoleType.SYSTEM
    else:
        tenant_id, role_type = resolve_target_tenant(principal, role.tenant_id), RoleType.CUSTOM
        await get_tenant(db, tenant_id)

    db_role = await role_store.create_role(
        db,
        tenant_id=tenant_id,
        name=role.name,
        slug=role.slug,
        description=role.description,
        permissions=entries_to_table(role.permissions),
        for_user_types=role.for_user_types,
        level=role.level,
        role_type=role_type,
    )

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="role.created",
        resource_type="role",
        resource_id=db_role.id,
        tenant_id=tenant_id,
        details=role.model_dump(mode="json"),
        request=request,
    )

    return db_role


@router.get("/", response_model=RoleListResponse)
async def list_roles(
    skip: int = 0,
    limit: int = 100,
    tenant_id: Optional[str] = None,
    role_type: Optional[RoleType] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "read"))
):
    """
    List roles: the caller's tenant roles plus system roles.

    Operators see every role, or one tenant's roles plus system roles when
    tenant_id is given.
    """
    if principal.is_operator:
        scope = dict(tenant_id=tenant_id, all_tenants=tenant_id is None)
    else:
        scope = dict(tenant_id=principal.tenant_id)

    roles = await role_store.list_roles(db, role_type=role_type, search=search, skip=skip, limit=limit, **scope)
    total = await role_store.count_roles(db, role_type=role_type, search=search, **scope)

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return RoleListResponse(
        items=[RoleResponse.model_validate(r) for r in roles],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )


@router.post("/defaults", response_model=List[RoleResponse])
async def seed_default_roles(
    background_tasks: BackgroundTasks,
    request: Request,
    tenant_id: Optional[str] = None,
    system: bool = False,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "create"))
):
    """
    Create or reset the default Admin / Manager / User roles.

    Idempotent: calling it again rewrites the same rows.
    """
    if system:
        if not principal.is_operator:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only operators can seed system roles"
            )
        target = None
    else:
        target = resolve_target_tenant(principal, tenant_id)
        await get_tenant(db, target)

    roles = await ensure_default_roles(db, target)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="role.defaults_seeded",
        resource_type="role",
        tenant_id=target,
        details={"roles": [r.id for r in roles]},
        request=request,
    )

    return roles


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "read"))
):
    """Get a specific role."""
    role = await role_store.get_role(db, role_id)
    _ensure_visible(principal, role)
    return role


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "update"))
):
    """
    Update a role.

    A system role's permissions, user types and level never change here;
    operators may rename it or change its description.
    """
    role = await role_store.get_role(db, role_id)
    _ensure_visible(principal, role)

    update_data = role_update.model_dump(exclude_unset=True)
    patch = dict(update_data)
    if role_update.permissions is not None:
        patch["permissions"] = entries_to_table(role_update.permissions)

    role = await role_store.update_role(db, role_id, patch, allow_system_metadata=principal.is_operator)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="role.updated",
        resource_type="role",
        resource_id=role_id,
        tenant_id=role.tenant_id,
        details=role_update.model_dump(mode="json", exclude_unset=True),
        request=request,
    )

    return role


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("role_management", "delete"))
):
    """
    Delete a custom role.

    Users and groups holding the role keep the reference; it simply stops
    granting anything.
    """
    role = await role_store.get_role(db, role_id)
    _ensure_visible(principal, role)

    role = await role_store.delete_role(db, role_id)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="role.deleted",
        resource_type="role",
        resource_id=role_id,
        tenant_id=role.tenant_id,
        details={"name": role.name, "slug": role.slug},
        request=request,
    )

    return None
