"""
User store: principals, their direct role assignments and custom permissions.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Sequence, Set
from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_access.core.database.statements import insert_ignore
from tenant_access.core.errors import DuplicateEmail, NotFound, TenantRequired
from tenant_access.features.permissions.table import EMPTY_TABLE, PermissionTable
from tenant_access.features.roles.models import Role
from tenant_access.features.tenants.models import Tenant
from tenant_access.features.users.models import OPERATOR_USER_TYPES, User, UserType, user_roles
from tenant_access.utils import get_logger


log = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "is_active"})


async def create_user(
    db: AsyncSession,
    *,
    email: str,
    name: str,
    user_type: UserType,
    tenant_id: Optional[str] = None,
    custom_permissions: PermissionTable = EMPTY_TABLE,
) -> User:
    """
    Create a user.

    Operators are stored without a tenant whatever tenant_id says; every
    other user type needs one.

    Raises:
        TenantRequired: a tenant user type without tenant_id
        NotFound: tenant_id does not name a tenant
        DuplicateEmail: the email is taken
    """
    user_type = UserType(user_type)
    if user_type in OPERATOR_USER_TYPES:
        tenant_id = None
    elif tenant_id is None:
        raise TenantRequired(f"{user_type.value} users must belong to a tenant")
    else:
        tenant = (await db.execute(select(Tenant.id).where(Tenant.id == tenant_id))).first()
        if tenant is None:
            raise NotFound("Tenant not found")

    email = email.strip().lower()
    user = User(
        email=email,
        name=name.strip(),
        user_type=user_type,
        tenant_id=tenant_id,
        custom_permissions=custom_permissions.to_entries(),
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateEmail(f"User with email '{email}' already exists")
    await db.refresh(user)
    log.info(f"Created {user_type.value} user {user.id} in tenant {tenant_id}")
    return user


async def get_user(db: AsyncSession, user_id: str) -> User:
    """
    Raises:
        NotFound: no user with user_id
    """
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


async def list_users(
    db: AsyncSession,
    *,
    tenant_id: Optional[str] = None,
    user_type: Optional[UserType] = None,
    include_inactive: bool = False,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Sequence[User]:
    stmt = select(User)
    if tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    if user_type is not None:
        stmt = stmt.where(User.user_type == user_type)
    if not include_inactive:
        stmt = stmt.where(User.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    stmt = stmt.order_by(User.created_at.desc()).offset(skip).limit(limit)
    return (await db.execute(stmt)).scalars().all()


async def update_user(db: AsyncSession, user_id: str, patch: Dict[str, Any]) -> User:
    """
    Apply name / is_active changes. User type and tenant are fixed at creation.
    """
    user = await get_user(db, user_id)
    changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS and v is not None}
    for key, value in changes.items():
        setattr(user, key, value)
    await db.commit()
    await db.refresh(user)
    log.info(f"Updated user {user.id}: {sorted(changes)}")
    return user


async def deactivate_user(db: AsyncSession, user_id: str) -> User:
    """Soft-delete: an inactive user is denied every permission."""
    return await update_user(db, user_id, {"is_active": False})


async def touch_last_login(db: AsyncSession, user: User) -> None:
    user.last_login_at = datetime.now()
    await db.commit()
    await db.refresh(user)


# ============================================================================
# Direct roles
# ============================================================================

async def get_user_role_ids(db: AsyncSession, user_id: str) -> Set[str]:
    rows = await db.execute(select(user_roles.c.role_id).where(user_roles.c.user_id == user_id))
    return set(rows.scalars().all())


async def assign_user_roles(db: AsyncSession, user_id: str, role_ids: Iterable[str]) -> Set[str]:
    """
    Add roles to the user's direct role set (set union).

    for_user_types is advisory: a role meant for another user type is still
    assigned, with a warning.

    Raises:
        NotFound: the user does not exist, or a role id is neither a system
            role nor a role of the user's tenant
    """
    user = await get_user(db, user_id)
    wanted = sorted(set(role_ids))
    if wanted:
        stmt = select(Role).where(Role.id.in_(wanted))
        if user.tenant_id is not None:
            stmt = stmt.where(or_(Role.tenant_id.is_(None), Role.tenant_id == user.tenant_id))
        roles = {role.id: role for role in (await db.execute(stmt)).scalars().all()}
        missing = [rid for rid in wanted if rid not in roles]
        if missing:
            raise NotFound(f"Roles not found: {', '.join(missing)}")

        for role in roles.values():
            if role.for_user_types and user.user_type.value not in role.for_user_types:
                log.warning(
                    f"Role {role.id} ({role.slug}) is meant for {role.for_user_types}, "
                    f"assigning to {user.user_type.value} user {user.id}"
                )

        now = datetime.now()
        await insert_ignore(
            db,
            user_roles,
            [{"user_id": user_id, "role_id": rid, "assigned_at": now} for rid in wanted],
            index_elements=["user_id", "role_id"],
        )
        await db.commit()
        log.info(f"Assigned roles {wanted} to user {user_id}")
    return await get_user_role_ids(db, user_id)


async def remove_user_roles(db: AsyncSession, user_id: str, role_ids: Iterable[str]) -> Set[str]:
    """Remove roles from the user's direct role set (set difference)."""
    await get_user(db, user_id)
    unwanted = sorted(set(role_ids))
    if unwanted:
        await db.execute(
            delete(user_roles).where(user_roles.c.user_id == user_id, user_roles.c.role_id.in_(unwanted))
        )
        await db.commit()
        log.info(f"Removed roles {unwanted} from user {user_id}")
    return await get_user_role_ids(db, user_id)


# ============================================================================
# Custom permissions
# ============================================================================

async def set_custom_permissions(db: AsyncSession, user_id: str, table: PermissionTable) -> User:
    """Replace the user's custom permissions."""
    user = await get_user(db, user_id)
    user.custom_permissions = table.to_entries()
    await db.commit()
    await db.refresh(user)
    log.info(f"Set custom permissions of user {user_id}: {table!r}")
    return user


async def grant_custom_permissions(db: AsyncSession, user_id: str, table: PermissionTable) -> User:
    """
    Merge table into the user's custom permissions.

    The row is locked for the read-merge-write, so concurrent grants compose
    on databases that support SELECT ... FOR UPDATE.
    """
    stmt = select(User).where(User.id == user_id).with_for_update()
    user = (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    current = PermissionTable.from_entries(user.custom_permissions)
    user.custom_permissions = current.merge(table).to_entries()
    await db.commit()
    await db.refresh(user)
    log.info(f"Granted custom permissions to user {user_id}: {table!r}")
    return user