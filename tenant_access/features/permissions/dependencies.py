"""
FastAPI dependencies for route protection.

Every dependency loads a fresh Principal snapshot for the authenticated user,
so role, group and membership changes apply to the very next request.
"""
from typing import Annotated, Any, List, Optional, Tuple
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.engine import get_db
from tenant_access.features.permissions.resolver import (
    Principal,
    has_all_permissions,
    has_any_permission,
    has_permission,
    load_principal,
)
from tenant_access.features.permissions.tenant_guard import can_access
from tenant_access.features.users.dependencies import get_current_user
from tenant_access.features.users.models import User
from tenant_access.utils import get_logger


log = get_logger(__name__)


async def get_current_principal(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Principal:
    """Permission snapshot of the authenticated user."""
    principal = await load_principal(db, user.id)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return principal


def require_permission(feature: str, action: Any):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            principal: Principal = Depends(require_permission("role_management", "create"))
        ):
            # Caller may create roles
            pass

    Returns:
        Dependency function that returns the caller's Principal

    Raises:
        HTTPException: 403 if the caller lacks the permission
    """
    async def permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if not has_permission(principal, feature, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {feature}"
            )
        return principal

    return permission_dependency


def require_any_permission(permissions: List[Tuple[str, str]]):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            principal: Principal = Depends(
                require_any_permission([("report_management", "read"), ("advanced_analytics", "read")])
            )
        ):
            pass
    """
    async def permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if not has_any_permission(principal, permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires one of {permissions}"
            )
        return principal

    return permission_dependency


def require_all_permissions(permissions: List[Tuple[str, str]]):
    """FastAPI dependency to require ALL of the specified permissions."""
    async def permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if not has_all_permissions(principal, permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires all of {permissions}"
            )
        return principal

    return permission_dependency


def ensure_tenant_access(principal: Principal, resource_tenant: Optional[str]) -> None:
    """
    Raise 403 unless principal may reach resources of resource_tenant.

    Applied on top of the feature permission check.
    """
    if not can_access(principal, resource_tenant):
        log.info(f"User {principal.user_id} denied access to tenant {resource_tenant}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )
