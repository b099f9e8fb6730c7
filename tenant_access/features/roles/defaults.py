"""
Canonical default roles.

ensure_default_roles() upserts them, so it is safe to call on every startup,
on every tenant onboarding, and from concurrent requests. Without a tenant the
roles are created as system roles; with one they are custom roles owned by
that tenant.
"""
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.roles.models import Role, RoleType
from tenant_access.features.roles.store import upsert_role
from tenant_access.features.users.models import UserType
from tenant_access.utils import get_logger


log = get_logger(__name__)


_CRM_FEATURES = (
    "lead_management",
    "account_management",
    "contact_management",
    "opportunity_management",
    "activity_management",
    "task_management",
    "meeting_management",
    "call_management",
    "note_management",
)


DEFAULT_ROLES: List[Dict[str, Any]] = [
    {
        "name": "Admin",
        "slug": "admin",
        "description": "Full access to tenant users, roles, groups and CRM data",
        "level": 50,
        "for_user_types": [UserType.TENANT_ADMIN],
        "permissions": {
            "user_management": ["manage"],
            "role_management": ["manage"],
            "group_management": ["manage"],
            "report_management": ["manage"],
            **{feature: ["manage"] for feature in _CRM_FEATURES},
        },
    },
    {
        "name": "Manager",
        "slug": "manager",
        "description": "Manages users in their groups and the team's CRM data",
        "level": 30,
        "for_user_types": [UserType.TENANT_MANAGER],
        "permissions": {
            "user_management": ["read", "update"],
            "group_management": ["read"],
            "report_management": ["read", "create", "export"],
            **{feature: ["create", "read", "update", "delete"] for feature in _CRM_FEATURES},
        },
    },
    {
        "name": "User",
        "slug": "user",
        "description": "Basic user working their own CRM records",
        "level": 10,
        "for_user_types": [UserType.TENANT_USER],
        "permissions": {
            "user_management": ["read"],
            **{feature: ["create", "read", "update"] for feature in _CRM_FEATURES},
        },
    },
]

# Default slugs and the names they are bound to
RESERVED_SLUGS: Dict[str, str] = {d["slug"]: d["name"] for d in DEFAULT_ROLES}


async def ensure_default_roles(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
    *,
    commit: bool = True,
) -> List[Role]:
    """
    Make the default role set exist with its canonical definition.

    Existing roles of the same name get their permissions, for_user_types and
    level reset; missing ones are created.

    commit=False writes inside the caller's transaction (tenant onboarding).
    """
    role_type = RoleType.SYSTEM if tenant_id is None else RoleType.CUSTOM
    roles = []
    for definition in DEFAULT_ROLES:
        roles.append(
            await upsert_role(
                db,
                tenant_id=tenant_id,
                name=definition["name"],
                slug=definition["slug"],
                description=definition["description"],
                permissions=PermissionTable(definition["permissions"]),
                for_user_types=definition["for_user_types"],
                level=definition["level"],
                role_type=role_type,
                commit=commit,
            )
        )
    log.info(f"Ensured {len(roles)} default roles for tenant {tenant_id or 'system'}")
    return roles
