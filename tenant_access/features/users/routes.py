"""
User feature routes.
"""
from types import SimpleNamespace
from typing import Annotated, List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.audit.service import create_audit_log
from tenant_access.features.permissions.dependencies import ensure_tenant_access, require_permission
from tenant_access.features.permissions.resolver import Principal
from tenant_access.features.permissions.schemas import entries_to_table
from tenant_access.features.permissions.tenant_guard import can_manage_user, resolve_target_tenant
from tenant_access.features.users import store as user_store
from tenant_access.features.users.dependencies import get_current_user
from tenant_access.features.users.models import OPERATOR_USER_TYPES, User, UserType
from tenant_access.features.users.schemas import (
    CustomPermissionsRequest,
    UserCreate,
    UserResponse,
    UserRolesRequest,
    UserRolesResponse,
    UserUpdate,
)


router = APIRouter(tags=["users"])


async def _managed_user(db: AsyncSession, principal: Principal, user_id: str) -> User:
    """Load user_id and make sure principal may administer it."""
    user = await user_store.get_user(db, user_id)
    ensure_tenant_access(principal, user.tenant_id)
    if not can_manage_user(principal, user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot manage a user of equal or higher level"
        )
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "create"))]
):
    """
    Create a user.

    Operator accounts are created by operators only and have no tenant.
    Tenant users land in the caller's tenant; operators must name it.
    """
    if body.user_type in OPERATOR_USER_TYPES:
        if not principal.is_operator:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only operators can create operator accounts"
            )
        tenant_id = None
    else:
        tenant_id = resolve_target_tenant(principal, body.tenant_id)
        if not can_manage_user(principal, SimpleNamespace(tenant_id=tenant_id, user_type=body.user_type)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Cannot create {body.user_type.value} users"
            )

    user = await user_store.create_user(
        db,
        email=body.email,
        name=body.name,
        user_type=body.user_type,
        tenant_id=tenant_id,
        custom_permissions=entries_to_table(body.custom_permissions),
    )

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="user.created",
        resource_type="user",
        resource_id=user.id,
        tenant_id=tenant_id,
        details={"email": user.email, "user_type": user.user_type.value},
        request=request,
    )

    return user


@router.get("/", response_model=List[UserResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "read"))],
    skip: int = 0,
    limit: int = 50,
    tenant_id: Optional[str] = None,
    user_type: Optional[UserType] = None,
    include_inactive: bool = False,
    search: Optional[str] = None,
):
    """List users of the caller's tenant (operators: all, or one tenant)."""
    if not principal.is_operator:
        tenant_id = principal.tenant_id
    return await user_store.list_users(
        db,
        tenant_id=tenant_id,
        user_type=user_type,
        include_inactive=include_inactive,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "read"))]
):
    """Get a user by ID."""
    user = await user_store.get_user(db, user_id)
    ensure_tenant_access(principal, user.tenant_id)
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    user_update: UserUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "update"))]
):
    """Update a user's name or active flag."""
    target = await _managed_user(db, principal, user_id)

    # Prevent self-deactivation
    if target.id == principal.user_id and user_update.is_active is False:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    update_data = user_update.model_dump(exclude_unset=True)
    user = await user_store.update_user(db, user_id, update_data)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="user.updated",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        details=update_data,
        request=request,
    )

    return user


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "delete"))]
):
    """Deactivate a user account. Inactive users are denied every permission."""
    target = await _managed_user(db, principal, user_id)

    # Prevent self-deactivation
    if target.id == principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    user = await user_store.deactivate_user(db, user_id)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="user.deactivated",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        request=request,
    )

    return {"message": "User deactivated successfully"}


# ============================================================================
# Direct roles & custom permissions
# ============================================================================

@router.get("/{user_id}/roles", response_model=UserRolesResponse)
async def get_user_roles(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "read"))]
):
    """Get the ids of a user's directly assigned roles."""
    user = await user_store.get_user(db, user_id)
    ensure_tenant_access(principal, user.tenant_id)
    role_ids = await user_store.get_user_role_ids(db, user_id)
    return UserRolesResponse(user_id=user_id, role_ids=sorted(role_ids))


@router.post("/{user_id}/roles", response_model=UserRolesResponse)
async def assign_user_roles(
    user_id: str,
    body: UserRolesRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "update"))]
):
    """Assign roles to a user."""
    user = await _managed_user(db, principal, user_id)
    role_ids = await user_store.assign_user_roles(db, user_id, body.roles)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="user.roles_assigned",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        details={"roles": body.roles},
        request=request,
    )

    return UserRolesResponse(user_id=user_id, role_ids=sorted(role_ids))


@router.delete("/{user_id}/roles", response_model=UserRolesResponse)
async def remove_user_roles(
    user_id: str,
    body: UserRolesRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "update"))]
):
    """Remove roles from a user."""
    user = await _managed_user(db, principal, user_id)
    role_ids = await user_store.remove_user_roles(db, user_id, body.roles)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="user.roles_removed",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        details={"roles": body.roles},
        request=request,
    )

    return UserRolesResponse(user_id=user_id, role_ids=sorted(role_ids))


@router.post("/{user_id}/permissions", response_model=UserResponse)
async def grant_custom_permissions(
    user_id: str,
    body: CustomPermissionsRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "manage"))]
):
    """Merge permissions into a user's custom grants."""
    await _managed_user(db, principal, user_id)
    user = await user_store.grant_custom_permissions(db, user_id, entries_to_table(body.permissions))

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="permission.granted",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        details=body.model_dump(mode="json"),
        request=request,
    )

    return user


@router.put("/{user_id}/permissions", response_model=UserResponse)
async def set_custom_permissions(
    user_id: str,
    body: CustomPermissionsRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user_management", "manage"))]
):
    """Replace a user's custom grants."""
    await _managed_user(db, principal, user_id)
    user = await user_store.set_custom_permissions(db, user_id, entries_to_table(body.permissions))

    background_tasks.add_task(
        create_audit_log,
        db=db,
        user_id=principal.user_id,
        action="permission.replaced",
        resource_type="user",
        resource_id=user_id,
        tenant_id=user.tenant_id,
        details=body.model_dump(mode="json"),
        request=request,
    )

    return user
