"""
Tenant isolation rules.

can_access() answers "may this principal address a resource owned by this
tenant?", independently of feature/action permission. Callers apply it in
addition to has_permission(), never instead of it.
"""
from typing import Optional, Protocol

from tenant_access.core.errors import TenantRequired
from tenant_access.features.users.models import UserType, OPERATOR_USER_TYPES, USER_TYPE_HIERARCHY


class TenantScoped(Protocol):
    """Anything with a tenant and a user type: a User row or a Principal snapshot."""
    tenant_id: Optional[str]
    user_type: UserType


def is_operator(principal: TenantScoped) -> bool:
    return principal.user_type in OPERATOR_USER_TYPES


def can_access(principal: TenantScoped, resource_tenant: Optional[str]) -> bool:
    """
    True if principal is an operator, or belongs to resource_tenant.

    A tenant-scoped principal without a tenant reaches nothing.
    """
    if is_operator(principal):
        return True
    return principal.tenant_id is not None and principal.tenant_id == resource_tenant


def resolve_target_tenant(principal: TenantScoped, requested: Optional[str]) -> str:
    """
    Pick the tenant a new resource is created in.

    Operators have no implicit tenant and must name one. Tenant-scoped
    principals always create in their own tenant; requested is ignored.

    Raises:
        TenantRequired: operator without an explicit tenant, or a tenant-scoped
            principal that has no tenant
    """
    if is_operator(principal):
        if not requested:
            raise TenantRequired("Tenant is required")
        return requested
    if principal.tenant_id is None:
        raise TenantRequired("Principal has no tenant")
    return principal.tenant_id


def user_hierarchy_level(user_type: UserType) -> int:
    return USER_TYPE_HIERARCHY.get(user_type, 0)


def can_manage_user(actor: TenantScoped, target: TenantScoped) -> bool:
    """
    Whether actor may administer target.

    Operators manage anyone. Tenant admins manage everyone in their own
    tenant, other admins included. Other users only manage strictly lower
    user types in their own tenant.
    """
    if is_operator(actor):
        return True
    if actor.tenant_id is None or actor.tenant_id != target.tenant_id:
        return False
    if actor.user_type == UserType.TENANT_ADMIN:
        return True
    return user_hierarchy_level(actor.user_type) > user_hierarchy_level(target.user_type)
