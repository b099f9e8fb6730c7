"""Tests for the group store: CRUD and set-merge membership / role assignment."""

import asyncio

import pytest

from tenant_access.core.errors import DuplicateSlug, InvalidReference, NotFound
from tenant_access.features.groups import store as group_store
from tenant_access.features.permissions.table import PermissionTable
from tenant_access.features.roles import store as role_store
from tenant_access.features.roles.defaults import DEFAULT_ROLES, ensure_default_roles
from tenant_access.features.roles.store import delete_role
from tenant_access.features.tenants.store import create_tenant
from tenant_access.features.users import store as user_store
from tenant_access.features.users.models import UserType

from utils import make_role


async def _users(db, tenant_id, *names):
    ids = []
    for name in names:
        user = await user_store.create_user(
            db, email=f"{name}@acme.io", name=name, user_type=UserType.TENANT_USER, tenant_id=tenant_id,
        )
        ids.append(user.id)
    return ids


class TestGroupCrud:

    async def test_create_starts_empty(self, db, tenant_ids):
        t1, _ = tenant_ids
        group = await group_store.create_group(
            db, tenant_id=t1, name="Sales", slug="Sales",
            group_permissions=PermissionTable({"report_management": ["read"]}),
        )
        assert group.slug == "sales"
        assert group.group_permissions == [{"feature": "report_management", "actions": ["read"]}]
        assert await group_store.get_member_ids(db, group.id) == set()
        assert await group_store.get_role_ids(db, group.id) == set()

    async def test_duplicate_slug_per_tenant(self, db, tenant_ids):
        t1, t2 = tenant_ids
        await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.create_group(db, tenant_id=t2, name="Sales", slug="sales")
        with pytest.raises(DuplicateSlug):
            await group_store.create_group(db, tenant_id=t1, name="Sales 2", slug="sales")

    async def test_parent_must_be_in_same_tenant(self, db, tenant_ids):
        t1, t2 = tenant_ids
        foreign = await group_store.create_group(db, tenant_id=t2, name="Other", slug="other")
        with pytest.raises(NotFound):
            await group_store.create_group(db, tenant_id=t1, name="Child", slug="child", parent_group_id=foreign.id)

    async def test_group_cannot_be_its_own_parent(self, db, tenant_ids):
        t1, _ = tenant_ids
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        with pytest.raises(InvalidReference):
            await group_store.update_group(db, group.id, {"parent_group_id": group.id})

    async def test_update_and_clear_parent(self, db, tenant_ids):
        t1, _ = tenant_ids
        parent = await group_store.create_group(db, tenant_id=t1, name="All", slug="all")
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")

        group = await group_store.update_group(db, group.id, {"parent_group_id": parent.id, "name": "Sales EU"})
        assert group.parent_group_id == parent.id
        assert group.name == "Sales EU"

        group = await group_store.update_group(db, group.id, {"parent_group_id": None})
        assert group.parent_group_id is None

    async def test_list_is_tenant_scoped(self, db, tenant_ids):
        t1, t2 = tenant_ids
        await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.create_group(db, tenant_id=t2, name="Support", slug="support")
        assert [g.name for g in await group_store.list_groups(db, tenant_id=t1)] == ["Sales"]
        assert len(await group_store.list_groups(db)) == 2

    async def test_delete_leaves_users_and_roles(self, db, tenant_ids):
        t1, _ = tenant_ids
        (u1,) = await _users(db, t1, "u1")
        role_id = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.add_members(db, group.id, [u1])
        await group_store.assign_roles(db, group.id, [role_id])

        await group_store.delete_group(db, group.id)

        with pytest.raises(NotFound):
            await group_store.get_group(db, group.id)
        assert (await user_store.get_user(db, u1)).is_active
        assert await group_store.get_member_ids(db, group.id) == set()


class TestMembership:

    async def test_add_members_is_an_idempotent_union(self, db, tenant_ids):
        t1, _ = tenant_ids
        u1, u2, u3 = await _users(db, t1, "u1", "u2", "u3")
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")

        await group_store.add_members(db, group.id, [u1, u2])
        members = await group_store.add_members(db, group.id, [u2, u3])

        assert members == {u1, u2, u3}
        assert await group_store.get_member_ids(db, group.id) == {u1, u2, u3}

    async def test_add_same_member_twice_in_one_call(self, db, tenant_ids):
        t1, _ = tenant_ids
        (u1,) = await _users(db, t1, "u1")
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        assert await group_store.add_members(db, group.id, [u1, u1]) == {u1}

    async def test_remove_absent_member_is_a_no_op(self, db, tenant_ids):
        t1, _ = tenant_ids
        u1, u2 = await _users(db, t1, "u1", "u2")
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.add_members(db, group.id, [u1])

        assert await group_store.remove_members(db, group.id, [u2]) == {u1}
        assert await group_store.remove_members(db, group.id, [u1]) == set()

    async def test_members_must_belong_to_group_tenant(self, db, tenant_ids):
        t1, t2 = tenant_ids
        (outsider,) = await _users(db, t2, "outsider")
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        with pytest.raises(NotFound):
            await group_store.add_members(db, group.id, [outsider])
        assert await group_store.get_member_ids(db, group.id) == set()

    async def test_missing_group(self, db):
        with pytest.raises(NotFound):
            await group_store.add_members(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ", [])


class TestRoleAssignment:

    async def test_assign_roles_is_an_idempotent_union(self, db, tenant_ids):
        t1, _ = tenant_ids
        r1 = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        r2 = await make_role(db, t1, "Editor", {"lead_management": ["update"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")

        await group_store.assign_roles(db, group.id, [r1])
        assert await group_store.assign_roles(db, group.id, [r1, r2]) == {r1, r2}

    async def test_remove_never_assigned_role_is_a_no_op(self, db, tenant_ids):
        t1, _ = tenant_ids
        r1 = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        r2 = await make_role(db, t1, "Editor", {"lead_management": ["update"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.assign_roles(db, group.id, [r2])

        assert await group_store.remove_roles(db, group.id, [r1]) == {r2}

    async def test_system_roles_can_be_assigned(self, db, tenant_ids):
        t1, _ = tenant_ids
        system_role = await make_role(db, None, "Viewer", {"lead_management": ["read"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        assert await group_store.assign_roles(db, group.id, [system_role]) == {system_role}

    async def test_foreign_tenant_role_is_rejected(self, db, tenant_ids):
        t1, t2 = tenant_ids
        foreign = await make_role(db, t2, "Viewer", {"lead_management": ["read"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        with pytest.raises(NotFound):
            await group_store.assign_roles(db, group.id, [foreign])

    async def test_dangling_reference_can_be_removed(self, db, tenant_ids):
        t1, _ = tenant_ids
        r1 = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        group = await group_store.create_group(db, tenant_id=t1, name="Sales", slug="sales")
        await group_store.assign_roles(db, group.id, [r1])
        await delete_role(db, r1)

        assert await group_store.get_role_ids(db, group.id) == {r1}
        assert await group_store.remove_roles(db, group.id, [r1]) == set()


class TestConcurrentWrites:
    """Overlapping writers on separate connections."""

    async def test_overlapping_adds_and_seeding_converge(self, file_session_factory):
        async with file_session_factory() as session:
            tenant = await create_tenant(session, name="Tenant One", slug="t1")
            ids = await _users(session, tenant.id, "u1", "u2", "u3", "u4", "u5", "u6")
            group = await group_store.create_group(session, tenant_id=tenant.id, name="Sales", slug="sales")

        async def add(user_ids):
            async with file_session_factory() as session:
                return await group_store.add_members(session, group.id, user_ids)

        async def seed():
            async with file_session_factory() as session:
                return [r.id for r in await ensure_default_roles(session, tenant.id)]

        results = await asyncio.gather(add(ids[:4]), add(ids[2:]), seed(), seed(), seed())

        assert set(ids[:4]) <= results[0]
        assert set(ids[2:]) <= results[1]
        assert results[2] == results[3] == results[4]

        async with file_session_factory() as session:
            assert await group_store.get_member_ids(session, group.id) == set(ids)
            roles = await role_store.list_roles(session, tenant_id=tenant.id)
            assert len(roles) == len(DEFAULT_ROLES)
            assert sorted(r.id for r in roles) == sorted(results[2])
