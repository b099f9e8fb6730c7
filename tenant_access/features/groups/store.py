"""
Group store: CRUD for groups and idempotent membership / role assignment.

Membership and role sets are mutated as set-merges against current state:
additions are conflict-ignoring inserts and removals are keyed deletes, so
concurrent overlapping calls compose (two add_members calls yield the union)
and adding a present id or removing an absent one is a no-op.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from sqlalchemy import Select, func, select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.statements import insert_ignore
from tenant_access.core.errors import DuplicateSlug, InvalidReference, NotFound
from tenant_access.features.groups.models import Group, group_members, group_roles
from tenant_access.features.permissions.table import EMPTY_TABLE, PermissionTable
from tenant_access.features.roles.models import Role
from tenant_access.features.users.models import User
from tenant_access.utils import get_logger


log = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "description", "parent_group_id", "group_permissions", "is_active"})
NULLABLE_FIELDS = frozenset({"description", "parent_group_id"})


def _unique(ids: Iterable[str]) -> List[str]:
    return sorted(set(ids))


async def _check_parent(db: AsyncSession, tenant_id: str, parent_group_id: Optional[str]) -> None:
    if parent_group_id is None:
        return
    stmt = select(Group.id).where(Group.id == parent_group_id, Group.tenant_id == tenant_id)
    if (await db.execute(stmt)).first() is None:
        raise NotFound("Parent group not found")


async def create_group(
    db: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    slug: str,
    description: Optional[str] = None,
    parent_group_id: Optional[str] = None,
    group_permissions: PermissionTable = EMPTY_TABLE,
) -> Group:
    """
    Create a group with no members and no roles.

    Raises:
        DuplicateSlug: (tenant, slug) is taken
        NotFound: parent_group_id is not a group of the same tenant
    """
    await _check_parent(db, tenant_id, parent_group_id)
    slug = slug.strip().lower()
    group = Group(
        tenant_id=tenant_id,
        name=name.strip(),
        slug=slug,
        description=description,
        parent_group_id=parent_group_id,
        group_permissions=group_permissions.to_entries(),
        is_active=True,
    )
    db.add(group)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateSlug(f"Group with slug '{slug}' already exists")
    await db.refresh(group)
    log.info(f"Created group {group.id} ({slug}) in tenant {tenant_id}")
    return group


async def get_group(db: AsyncSession, group_id: str) -> Group:
    """
    Raises:
        NotFound: no group with group_id
    """
    group = (await db.execute(select(Group).where(Group.id == group_id))).scalar_one_or_none()
    if group is None:
        raise NotFound("Group not found")
    return group


def _matching_groups(tenant_id: Optional[str], search: Optional[str]) -> Select:
    stmt = select(Group)
    if tenant_id is not None:
        stmt = stmt.where(Group.tenant_id == tenant_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Group.name.ilike(pattern), Group.description.ilike(pattern)))
    return stmt


async def list_groups(
    db: AsyncSession,
    *,
    tenant_id: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Sequence[Group]:
    """List groups, optionally restricted to one tenant."""
    stmt = _matching_groups(tenant_id, search).order_by(Group.created_at.desc()).offset(skip).limit(limit)
    return (await db.execute(stmt)).scalars().all()


async def count_groups(db: AsyncSession, *, tenant_id: Optional[str] = None, search: Optional[str] = None) -> int:
    stmt = select(func.count()).select_from(_matching_groups(tenant_id, search).subquery())
    return (await db.execute(stmt)).scalar() or 0


async def update_group(db: AsyncSession, group_id: str, patch: Dict[str, Any]) -> Group:
    """
    Apply patch to a group. Slug and tenant never change.

    Raises:
        NotFound: no such group, or the new parent is not in the same tenant
        InvalidReference: the group is named as its own parent
    """
    group = await get_group(db, group_id)
    changes = {
        k: v for k, v in patch.items()
        if k in UPDATABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }

    if changes.get("parent_group_id") is not None:
        if changes["parent_group_id"] == group.id:
            raise InvalidReference("A group cannot be its own parent")
        await _check_parent(db, group.tenant_id, changes["parent_group_id"])
    if "group_permissions" in changes:
        value = changes["group_permissions"]
        table = value if isinstance(value, PermissionTable) else PermissionTable.from_entries(value)
        changes["group_permissions"] = table.to_entries()

    for key, value in changes.items():
        setattr(group, key, value)
    await db.commit()
    await db.refresh(group)
    log.info(f"Updated group {group.id}: {sorted(changes)}")
    return group


async def delete_group(db: AsyncSession, group_id: str) -> Group:
    """
    Hard-delete a group. Members and referenced roles are untouched; the
    members simply stop receiving the group's grants.

    Raises:
        NotFound: no group with group_id
    """
    group = await get_group(db, group_id)
    await db.execute(delete(group_members).where(group_members.c.group_id == group_id))
    await db.execute(delete(group_roles).where(group_roles.c.group_id == group_id))
    await db.delete(group)
    await db.commit()
    log.info(f"Deleted group {group_id}")
    return group


# ============================================================================
# Membership
# ============================================================================

async def get_member_ids(db: AsyncSession, group_id: str) -> Set[str]:
    rows = await db.execute(select(group_members.c.user_id).where(group_members.c.group_id == group_id))
    return set(rows.scalars().all())


async def add_members(db: AsyncSession, group_id: str, user_ids: Iterable[str]) -> Set[str]:
    """
    Add user_ids to the group's members (set union).

    Returns:
        The member set after the change

    Raises:
        NotFound: the group does not exist, or a user id is not a user of the
            group's tenant
    """
    group = await get_group(db, group_id)
    wanted = _unique(user_ids)
    if wanted:
        found = set(
            (
                await db.execute(
                    select(User.id).where(User.id.in_(wanted), User.tenant_id == group.tenant_id)
                )
            ).scalars().all()
        )
        missing = [uid for uid in wanted if uid not in found]
        if missing:
            raise NotFound(f"Users not found in tenant: {', '.join(missing)}")

        now = datetime.now()
        await insert_ignore(
            db,
            group_members,
            [{"group_id": group_id, "user_id": uid, "joined_at": now} for uid in wanted],
            index_elements=["group_id", "user_id"],
        )
        await db.commit()
        log.info(f"Added members {wanted} to group {group_id}")
    return await get_member_ids(db, group_id)


async def remove_members(db: AsyncSession, group_id: str, user_ids: Iterable[str]) -> Set[str]:
    """
    Remove user_ids from the group's members (set difference).

    Raises:
        NotFound: the group does not exist
    """
    await get_group(db, group_id)
    unwanted = _unique(user_ids)
    if unwanted:
        await db.execute(
            delete(group_members).where(
                group_members.c.group_id == group_id,
                group_members.c.user_id.in_(unwanted),
            )
        )
        await db.commit()
        log.info(f"Removed members {unwanted} from group {group_id}")
    return await get_member_ids(db, group_id)


# ============================================================================
# Role assignment
# ============================================================================

async def get_role_ids(db: AsyncSession, group_id: str) -> Set[str]:
    rows = await db.execute(select(group_roles.c.role_id).where(group_roles.c.group_id == group_id))
    return set(rows.scalars().all())


async def assign_roles(db: AsyncSession, group_id: str, role_ids: Iterable[str]) -> Set[str]:
    """
    Add role_ids to the group's roles (set union).

    Raises:
        NotFound: the group does not exist, or a role id is neither a system
            role nor a role of the group's tenant
    """
    group = await get_group(db, group_id)
    wanted = _unique(role_ids)
    if wanted:
        found = set(
            (
                await db.execute(
                    select(Role.id).where(
                        Role.id.in_(wanted),
                        or_(Role.tenant_id.is_(None), Role.tenant_id == group.tenant_id),
                    )
                )
            ).scalars().all()
        )
        missing = [rid for rid in wanted if rid not in found]
        if missing:
            raise NotFound(f"Roles not found: {', '.join(missing)}")

        await insert_ignore(
            db,
            group_roles,
            [{"group_id": group_id, "role_id": rid} for rid in wanted],
            index_elements=["group_id", "role_id"],
        )
        await db.commit()
        log.info(f"Assigned roles {wanted} to group {group_id}")
    return await get_role_ids(db, group_id)


async def remove_roles(db: AsyncSession, group_id: str, role_ids: Iterable[str]) -> Set[str]:
    """
    Remove role_ids from the group's roles (set difference). Dangling ids of
    deleted roles can be removed too.

    Raises:
        NotFound: the group does not exist
    """
    await get_group(db, group_id)
    unwanted = _unique(role_ids)
    if unwanted:
        await db.execute(
            delete(group_roles).where(
                group_roles.c.group_id == group_id,
                group_roles.c.role_id.in_(unwanted),
            )
        )
        await db.commit()
        log.info(f"Removed roles {unwanted} from group {group_id}")
    return await get_role_ids(db, group_id)
