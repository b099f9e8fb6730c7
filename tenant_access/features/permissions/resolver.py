"""
Permission resolution.

has_permission() is a pure function over a Principal snapshot:

1. an inactive principal is denied everything;
2. an operator (SAAS_OWNER / SAAS_ADMIN) is allowed everything. This is the
   only place the bypass exists;
3. otherwise the principal's custom permissions, direct roles, and for each
   member group the group's roles plus its own entries are unioned;
4. the union is asked whether it grants (feature, action).

Role ids that do not resolve (deleted roles, roles of another tenant,
inactive roles) contribute nothing. Parent groups are never consulted.

load_principal() builds a fresh snapshot from the database on every call;
nothing is cached.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple
from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.features.groups.models import Group, group_members, group_roles
from tenant_access.features.permissions.table import EMPTY_TABLE, PermissionTable, merge
from tenant_access.features.roles.models import Role
from tenant_access.features.users.models import User, UserType, OPERATOR_USER_TYPES, user_roles
from tenant_access.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class GroupGrant:
    """What one group contributes: its assigned role ids and its own entries."""
    group_id: str
    role_ids: FrozenSet[str] = frozenset()
    permissions: PermissionTable = EMPTY_TABLE


@dataclass(frozen=True)
class Principal:
    """
    Point-in-time view of a user and everything that feeds their permissions.

    roles maps role id -> permission table for every role that resolved when
    the snapshot was taken; ids in role_ids or a group's role_ids that are
    missing from it are dangling and grant nothing.
    """
    user_id: str
    tenant_id: Optional[str]
    user_type: UserType
    is_active: bool = True
    role_ids: FrozenSet[str] = frozenset()
    custom_permissions: PermissionTable = EMPTY_TABLE
    groups: Tuple[GroupGrant, ...] = ()
    roles: Mapping[str, PermissionTable] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_operator(self) -> bool:
        return self.user_type in OPERATOR_USER_TYPES


def _role_tables(principal: Principal, role_ids: Iterable[str]) -> Tuple[PermissionTable, ...]:
    return tuple(principal.roles[rid] for rid in sorted(role_ids) if rid in principal.roles)


def permission_sources(principal: Principal) -> Dict[str, Any]:
    """
    Break the principal's grants down by source.

    Returns:
        {"custom": table, "roles": {role_id: table}, "groups": {group_id: table}}
        where each group table already includes the group's roles.
    """
    return {
        "custom": principal.custom_permissions,
        "roles": {rid: principal.roles[rid] for rid in sorted(principal.role_ids) if rid in principal.roles},
        "groups": {
            grant.group_id: merge(grant.permissions, *_role_tables(principal, grant.role_ids))
            for grant in principal.groups
        },
    }


def effective_permissions(principal: Principal) -> PermissionTable:
    """Union of every source, ignoring the active flag and the operator bypass."""
    group_tables = [
        merge(grant.permissions, *_role_tables(principal, grant.role_ids))
        for grant in principal.groups
    ]
    return merge(
        principal.custom_permissions,
        *_role_tables(principal, principal.role_ids),
        *group_tables,
    )


def has_permission(principal: Principal, feature: str, action: Any) -> bool:
    """
    Decide whether principal may perform action on feature.

    Unknown features and actions are denied. Never raises.
    """
    if not principal.is_active:
        log.debug(f"User {principal.user_id} is inactive - denied {action} on {feature}")
        return False

    # Operators bypass the permission tables entirely
    if principal.is_operator:
        log.debug(f"User {principal.user_id} is operator - granted {action} on {feature}")
        return True

    allowed = effective_permissions(principal).grants(feature, action)
    log.debug(
        f"User {principal.user_id} {'granted' if allowed else 'denied'} {action} on {feature} "
        f"in tenant {principal.tenant_id}"
    )
    return allowed


def has_any_permission(principal: Principal, checks: Iterable[Tuple[str, Any]]) -> bool:
    """True if any (feature, action) pair is permitted."""
    return any(has_permission(principal, feature, action) for feature, action in checks)


def has_all_permissions(principal: Principal, checks: Iterable[Tuple[str, Any]]) -> bool:
    """True if every (feature, action) pair is permitted."""
    return all(has_permission(principal, feature, action) for feature, action in checks)


# ============================================================================
# Snapshot loading
# ============================================================================

async def load_principal(db: AsyncSession, user_id: str) -> Optional[Principal]:
    """
    Read a fresh snapshot of user_id and everything feeding its permissions.

    Only roles that are system-wide or belong to the user's tenant, and only
    active groups of the user's tenant, contribute.

    Returns:
        None if the user does not exist
    """
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        return None

    direct_role_ids = frozenset(
        (await db.execute(select(user_roles.c.role_id).where(user_roles.c.user_id == user.id))).scalars().all()
    )

    group_rows = (
        await db.execute(
            select(Group)
            .join(group_members, group_members.c.group_id == Group.id)
            .where(
                group_members.c.user_id == user.id,
                Group.tenant_id == user.tenant_id,
                Group.is_active.is_(True),
            )
        )
    ).scalars().all()

    roles_by_group: Dict[str, set] = {g.id: set() for g in group_rows}
    if roles_by_group:
        rows = await db.execute(
            select(group_roles.c.group_id, group_roles.c.role_id)
            .where(group_roles.c.group_id.in_(list(roles_by_group)))
        )
        for group_id, role_id in rows.all():
            roles_by_group[group_id].add(role_id)

    wanted = set(direct_role_ids).union(*roles_by_group.values())
    roles: Dict[str, PermissionTable] = {}
    if wanted:
        role_rows = (
            await db.execute(
                select(Role).where(
                    Role.id.in_(list(wanted)),
                    Role.is_active.is_(True),
                    or_(Role.tenant_id.is_(None), Role.tenant_id == user.tenant_id),
                )
            )
        ).scalars().all()
        roles = {role.id: PermissionTable.from_entries(role.permissions) for role in role_rows}

    dangling = wanted - set(roles)
    if dangling:
        log.warning(f"User {user.id} references unresolved roles {sorted(dangling)}; they grant nothing")

    return Principal(
        user_id=user.id,
        tenant_id=user.tenant_id,
        user_type=user.user_type,
        is_active=user.is_active,
        role_ids=direct_role_ids,
        custom_permissions=PermissionTable.from_entries(user.custom_permissions),
        groups=tuple(
            GroupGrant(
                group_id=g.id,
                role_ids=frozenset(roles_by_group[g.id]),
                permissions=PermissionTable.from_entries(g.group_permissions),
            )
            for g in sorted(group_rows, key=lambda g: g.id)
        ),
        roles=roles,
    )


async def check_permission(db: AsyncSession, user_id: str, feature: str, action: Any) -> bool:
    """
    Load a fresh snapshot for user_id and resolve (feature, action).

    Total: a missing user or a failing read is a deny, never an exception.
    """
    try:
        principal = await load_principal(db, user_id)
    except SQLAlchemyError:
        log.exception(f"Failed to load permissions for user {user_id}; denying {action} on {feature}")
        return False
    if principal is None:
        log.debug(f"User {user_id} not found - denied {action} on {feature}")
        return False
    return has_permission(principal, feature, action)
