"""Helpers shared by the test modules."""

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core import config
from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.roles.models import RoleType
from tenant_access.features.roles.store import create_role


def auth_headers(user_id: str) -> dict[str, str]:
    """Bearer header for user_id, signed the way the identity provider would."""

    token = jwt.encode({"sub": user_id}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


async def make_role(db: AsyncSession, tenant_id: str | None, name: str, grants: dict) -> str:
    """Create a role named name (slug derived from it) and return its id. No tenant means a system role."""

    role = await create_role(
        db,
        tenant_id=tenant_id,
        name=name,
        slug=name.lower().replace(" ", "-"),
        permissions=PermissionTable(grants),
        role_type=RoleType.SYSTEM if tenant_id is None else RoleType.CUSTOM,
    )
    return role.id
