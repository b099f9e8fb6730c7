"""
Group API routes.
"""
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.audit.service import create_audit_log
from tenant_access.features.groups import store as group_store
from tenant_access.features.groups.models import Group
from tenant_access.features.groups.schemas import (
    GroupCreate,
    GroupDetail,
    GroupListResponse,
    GroupMembersRequest,
    GroupResponse,
    GroupRolesRequest,
    GroupUpdate,
)
from tenant_access.features.permissions.dependencies import ensure_tenant_access, require_permission
from tenant_access.features.permissions.resolver import Principal
from tenant_access.features.permissions.schemas import entries_to_table
from tenant_access.features.permissions.tenant_guard import resolve_target_tenant
from tenant_access.features.tenants.store import get_tenant


router = APIRouter()


async def _group_for(db: AsyncSession, principal: Principal, group_id: str) -> Group:
    group = await group_store.get_group(db, group_id)
    ensure_tenant_access(principal, group.tenant_id)
    return group


async def _detail(db: AsyncSession, group: Group) -> GroupDetail:
    detail = GroupDetail.model_validate(group)
    detail.member_ids = sorted(await group_store.get_member_ids(db, group.id))
    detail.role_ids = sorted(await group_store.get_role_ids(db, group.id))
    return detail


@router.post("/", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    group: GroupCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "create"))
):
    """Create a group in the caller's tenant (operators must name the tenant)."""
    tenant_id = resolve_target_tenant(principal, group.tenant_id)
    await get_tenant(db, tenant_id)

    db_group = await group_store.create_group(
        db,
        tenant_id=tenant_id,
        name=group.name,
        slug=group.slug,
        description=group.description,
        parent_group_id=group.parent_group_id,
        group_permissions=entries_to_table(group.group_permissions),
    )

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.created",
        resource_type="group",
        resource_id=db_group.id,
        tenant_id=tenant_id,
        details=group.model_dump(mode="json"),
        request=request,
    )

    return db_group


@router.get("/", response_model=GroupListResponse)
async def list_groups(
    skip: int = 0,
    limit: int = 100,
    tenant_id: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "read"))
):
    """List groups of the caller's tenant (operators: all, or one tenant)."""
    if not principal.is_operator:
        tenant_id = principal.tenant_id
    groups = await group_store.list_groups(db, tenant_id=tenant_id, search=search, skip=skip, limit=limit)
    total = await group_store.count_groups(db, tenant_id=tenant_id, search=search)

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return GroupListResponse(
        items=[GroupResponse.model_validate(g) for g in groups],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )


@router.get("/{group_id}", response_model=GroupDetail)
async def get_group(
    group_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "read"))
):
    """Get a group with its members and roles."""
    group = await _group_for(db, principal, group_id)
    return await _detail(db, group)


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: str,
    group_update: GroupUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "update"))
):
    """Update a group."""
    await _group_for(db, principal, group_id)

    patch = group_update.model_dump(exclude_unset=True)
    if group_update.group_permissions is not None:
        patch["group_permissions"] = entries_to_table(group_update.group_permissions)

    group = await group_store.update_group(db, group_id, patch)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.updated",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details=group_update.model_dump(mode="json", exclude_unset=True),
        request=request,
    )

    return group


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "delete"))
):
    """Delete a group. Its members lose the group's grants."""
    await _group_for(db, principal, group_id)
    group = await group_store.delete_group(db, group_id)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.deleted",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details={"name": group.name, "slug": group.slug},
        request=request,
    )

    return None


# ============================================================================
# Members & roles
# ============================================================================

@router.post("/{group_id}/members", response_model=GroupDetail)
async def add_members(
    group_id: str,
    body: GroupMembersRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "manage"))
):
    """Add users to a group. Users already present are left as they are."""
    group = await _group_for(db, principal, group_id)
    await group_store.add_members(db, group_id, body.members)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.members_added",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details={"members": body.members},
        request=request,
    )

    return await _detail(db, group)


@router.delete("/{group_id}/members", response_model=GroupDetail)
async def remove_members(
    group_id: str,
    body: GroupMembersRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "manage"))
):
    """Remove users from a group. Ids that are not members are ignored."""
    group = await _group_for(db, principal, group_id)
    await group_store.remove_members(db, group_id, body.members)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.members_removed",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details={"members": body.members},
        request=request,
    )

    return await _detail(db, group)


@router.post("/{group_id}/roles", response_model=GroupDetail)
async def assign_roles(
    group_id: str,
    body: GroupRolesRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "manage"))
):
    """Assign roles to a group; every member receives their permissions."""
    group = await _group_for(db, principal, group_id)
    await group_store.assign_roles(db, group_id, body.roles)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.roles_assigned",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details={"roles": body.roles},
        request=request,
    )

    return await _detail(db, group)


@router.delete("/{group_id}/roles", response_model=GroupDetail)
async def remove_roles(
    group_id: str,
    body: GroupRolesRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("group_management", "manage"))
):
    """Remove roles from a group."""
    group = await _group_for(db, principal, group_id)
    await group_store.remove_roles(db, group_id, body.roles)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="group.roles_removed",
        resource_type="group",
        resource_id=group_id,
        tenant_id=group.tenant_id,
        details={"roles": body.roles},
        request=request,
    )

    return await _detail(db, group)
