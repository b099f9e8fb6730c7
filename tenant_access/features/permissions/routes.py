"""
Permission query API routes.

Permission checks, effective-permission breakdowns and the feature registry.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.permissions.dependencies import get_current_principal, ensure_tenant_access
from tenant_access.features.permissions.resolver import (
    Principal,
    effective_permissions,
    has_permission,
    load_principal,
    permission_sources,
)
from tenant_access.features.permissions.schemas import (
    EffectivePermissionsResponse,
    FeatureResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
)
from tenant_access.features.permissions.table import FEATURES, coerce_action
from tenant_access.features.permissions.tenant_guard import can_access


router = APIRouter()


async def _visible_principal(db: AsyncSession, caller: Principal, user_id: str) -> Principal:
    """Snapshot of user_id, if caller may look at it (themselves, or user_management read)."""
    if user_id == caller.user_id:
        return caller
    if not has_permission(caller, "user_management", "read"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: read on user_management"
        )
    target = await load_principal(db, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    ensure_tenant_access(caller, target.tenant_id)
    return target


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """
    Check whether a user (the caller by default) may perform an action on a
    feature, and optionally whether they may reach a given tenant.
    """
    target = await _visible_principal(db, principal, check.user_id or principal.user_id)

    if coerce_action(check.action) is None:
        return PermissionCheckResponse(has_permission=False, reason=f"Unknown action '{check.action}'")

    if check.resource_tenant_id is not None and not can_access(target, check.resource_tenant_id):
        return PermissionCheckResponse(has_permission=False, reason="Tenant access denied")

    allowed = has_permission(target, check.feature, check.action)
    if allowed:
        reason = "Operator" if target.is_operator else "Permission granted"
    elif not target.is_active:
        reason = "User is inactive"
    else:
        reason = "Permission not granted"
    return PermissionCheckResponse(has_permission=allowed, reason=reason)


@router.get("/users/{user_id}", response_model=EffectivePermissionsResponse)
async def get_user_permissions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Get a user's permissions broken down by source, plus their union."""
    target = await _visible_principal(db, principal, user_id)
    sources = permission_sources(target)
    return EffectivePermissionsResponse(
        user_id=target.user_id,
        tenant_id=target.tenant_id,
        is_active=target.is_active,
        is_operator=target.is_operator,
        custom_permissions=sources["custom"].to_entries(),
        role_permissions={rid: table.to_entries() for rid, table in sources["roles"].items()},
        group_permissions={gid: table.to_entries() for gid, table in sources["groups"].items()},
        effective_permissions=effective_permissions(target).to_entries(),
    )


@router.get("/features", response_model=List[FeatureResponse])
async def list_features(
    principal: Principal = Depends(get_current_principal)
):
    """List the known features and the actions each one supports."""
    return [
        FeatureResponse(
            name=definition.name,
            actions=sorted(definition.actions, key=lambda a: a.value),
            description=definition.description,
        )
        for definition in FEATURES.values()
    ]
