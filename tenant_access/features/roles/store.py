"""
Role store: CRUD for roles plus the atomic default-role upsert.

Every mutating call is its own transaction, so a role update lands in full or
not at all. Deleting a role never touches the user_roles / group_roles
references; the resolver treats the dangling ids as granting nothing.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence
from sqlalchemy import Select, func, select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.base import generate_ulid
from tenant_access.core.database.statements import insert_or_update
from tenant_access.core.errors import DuplicateName, DuplicateSlug, NotFound, ReservedSlug, SystemRoleImmutable
from tenant_access.features.permissions.table import EMPTY_TABLE, PermissionTable
from tenant_access.features.roles.models import Role, RoleType, tenant_scope
from tenant_access.features.users.models import UserType
from tenant_access.utils import get_logger


log = get_logger(__name__)

# Fields a system role never changes through update_role()
PROTECTED_FIELDS = frozenset({"permissions", "for_user_types", "level", "is_active"})
UPDATABLE_FIELDS = frozenset({"name", "description", "permissions", "for_user_types", "level", "is_active"})


def normalize_slug(slug: str) -> str:
    return slug.strip().lower()


def _user_types(values: Optional[Iterable[Any]]) -> List[str]:
    return sorted({UserType(v).value for v in values or ()})


def check_reserved_slug(slug: str, name: str) -> None:
    """
    Default role slugs stay bound to their default names, so that
    ensure_default_roles() can always upsert them.

    Raises:
        ReservedSlug: slug belongs to a default role with another name
    """
    from tenant_access.features.roles.defaults import RESERVED_SLUGS

    expected = RESERVED_SLUGS.get(slug)
    if expected is not None and expected != name:
        raise ReservedSlug(f"Slug '{slug}' is reserved for the default '{expected}' role")


async def _raise_duplicate(db: AsyncSession, scope: str, slug: str, name: str) -> None:
    stmt = select(Role.id).where(Role.tenant_scope == scope, Role.slug == slug)
    if (await db.execute(stmt)).first():
        raise DuplicateSlug(f"Role with slug '{slug}' already exists")
    raise DuplicateName(f"Role with name '{name}' already exists")


async def create_role(
    db: AsyncSession,
    *,
    tenant_id: Optional[str],
    name: str,
    slug: str,
    description: Optional[str] = None,
    permissions: PermissionTable = EMPTY_TABLE,
    for_user_types: Optional[Iterable[Any]] = None,
    level: int = 1,
    role_type: RoleType = RoleType.CUSTOM,
) -> Role:
    """
    Create a role.

    tenant_id None creates a system-wide role.

    Raises:
        DuplicateSlug: (tenant, slug) is taken
        DuplicateName: (tenant, name) is taken
        ReservedSlug: slug is a default role slug paired with another name
    """
    slug = normalize_slug(slug)
    name = name.strip()
    check_reserved_slug(slug, name)
    scope = tenant_scope(tenant_id)
    role = Role(
        tenant_id=tenant_id,
        tenant_scope=scope,
        name=name,
        slug=slug,
        description=description,
        role_type=role_type,
        permissions=permissions.to_entries(),
        for_user_types=_user_types(for_user_types),
        level=level,
        is_active=True,
    )
    db.add(role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        await _raise_duplicate(db, scope, slug, name)
    await db.refresh(role)
    log.info(f"Created role {role.id} ({role.slug}) in tenant {tenant_id}")
    return role


async def get_role(db: AsyncSession, role_id: str) -> Role:
    """
    Raises:
        NotFound: no role with role_id
    """
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if role is None:
        raise NotFound("Role not found")
    return role


def _visible_roles(
    tenant_id: Optional[str],
    all_tenants: bool,
    role_type: Optional[RoleType],
    search: Optional[str],
) -> Select:
    stmt = select(Role)
    if not all_tenants:
        stmt = stmt.where(or_(Role.tenant_id == tenant_id, Role.role_type == RoleType.SYSTEM))
    if role_type is not None:
        stmt = stmt.where(Role.role_type == role_type)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))
    return stmt


async def list_roles(
    db: AsyncSession,
    *,
    tenant_id: Optional[str] = None,
    all_tenants: bool = False,
    role_type: Optional[RoleType] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Sequence[Role]:
    """
    List roles visible from tenant_id: its own custom roles plus every system
    role. all_tenants lists everything (operators).
    """
    stmt = _visible_roles(tenant_id, all_tenants, role_type, search)
    stmt = stmt.order_by(Role.level.desc(), Role.created_at.desc()).offset(skip).limit(limit)
    return (await db.execute(stmt)).scalars().all()


async def count_roles(
    db: AsyncSession,
    *,
    tenant_id: Optional[str] = None,
    all_tenants: bool = False,
    role_type: Optional[RoleType] = None,
    search: Optional[str] = None,
) -> int:
    """Number of roles list_roles() would page through."""
    stmt = _visible_roles(tenant_id, all_tenants, role_type, search)
    count_stmt = select(func.count()).select_from(stmt.subquery())
    return (await db.execute(count_stmt)).scalar() or 0


async def update_role(
    db: AsyncSession,
    role_id: str,
    patch: Dict[str, Any],
    *,
    allow_system_metadata: bool = False,
) -> Role:
    """
    Apply patch to a role.

    patch keys outside UPDATABLE_FIELDS are ignored. permissions may be a
    PermissionTable or a stored entry list.

    Raises:
        NotFound: no role with role_id
        SystemRoleImmutable: the role is a system role and the patch touches
            permissions, for_user_types, level or is_active, or touches anything else
            without allow_system_metadata (operators only)
        DuplicateName: the new name collides within the tenant
        ReservedSlug: the role holds a default slug and the new name differs
    """
    role = await get_role(db, role_id)
    # description is the only field that may be cleared
    changes = {
        k: v for k, v in patch.items()
        if k in UPDATABLE_FIELDS and (v is not None or k == "description")
    }

    if role.is_system and changes:
        touched = PROTECTED_FIELDS.intersection(changes)
        if touched:
            raise SystemRoleImmutable(f"Cannot modify {', '.join(sorted(touched))} of a system role")
        if not allow_system_metadata:
            raise SystemRoleImmutable("Cannot modify system roles")

    if "permissions" in changes:
        value = changes["permissions"]
        table = value if isinstance(value, PermissionTable) else PermissionTable.from_entries(value)
        changes["permissions"] = table.to_entries()
    if "for_user_types" in changes:
        changes["for_user_types"] = _user_types(changes["for_user_types"])
    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
        check_reserved_slug(role.slug, changes["name"])

    for key, value in changes.items():
        setattr(role, key, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateName(f"Role with name '{changes.get('name')}' already exists")
    await db.refresh(role)
    log.info(f"Updated role {role.id}: {sorted(changes)}")
    return role


async def delete_role(db: AsyncSession, role_id: str) -> Role:
    """
    Hard-delete a custom role. References held by users and groups are left
    in place and resolve to nothing.

    Raises:
        NotFound: no role with role_id
        SystemRoleImmutable: the role is a system role
    """
    role = await get_role(db, role_id)
    if role.is_system:
        raise SystemRoleImmutable("Cannot delete system roles")
    slug, tenant_id = role.slug, role.tenant_id
    await db.delete(role)
    await db.commit()
    log.info(f"Deleted role {role_id} ({slug}) from tenant {tenant_id}")
    return role


async def upsert_role(
    db: AsyncSession,
    *,
    tenant_id: Optional[str],
    name: str,
    slug: str,
    description: Optional[str] = None,
    permissions: PermissionTable = EMPTY_TABLE,
    for_user_types: Optional[Iterable[Any]] = None,
    level: int = 1,
    role_type: RoleType = RoleType.CUSTOM,
    commit: bool = True,
) -> Role:
    """
    Insert the role if (tenant, name) is free, otherwise overwrite its
    permissions, for_user_types and level with the given definition.

    A single INSERT ... ON CONFLICT DO UPDATE, so repeated and concurrent
    calls converge on one row. This is the only path that rewrites a system
    role's permissions.

    commit=False leaves the write in the caller's transaction.
    """
    scope = tenant_scope(tenant_id)
    values = {
        "id": generate_ulid(),
        "tenant_id": tenant_id,
        "tenant_scope": scope,
        "name": name,
        "slug": normalize_slug(slug),
        "description": description,
        "role_type": role_type,
        "permissions": permissions.to_entries(),
        "for_user_types": _user_types(for_user_types),
        "level": level,
        "is_active": True,
    }
    try:
        await insert_or_update(
            db,
            Role,
            values,
            index_elements=["tenant_scope", "name"],
            update_columns=["permissions", "for_user_types", "level"],
        )
        if commit:
            await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateSlug(f"Role with slug '{values['slug']}' already exists under another name")

    stmt = select(Role).where(Role.tenant_scope == scope, Role.name == name)
    role = (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one()
    log.debug(f"Upserted role {role.id} ({name}) in tenant {tenant_id}")
    return role
