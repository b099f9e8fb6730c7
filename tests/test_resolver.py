"""Tests for has_permission() over in-memory principals and over the database."""

import itertools

import pytest

from tenant_access.features.groups import store as group_store
from tenant_access.features.permissions.resolver import (
    GroupGrant,
    Principal,
    check_permission,
    effective_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
    load_principal,
    permission_sources,
)
from tenant_access.features.permissions.table import ALL_ACTIONS, EMPTY_TABLE, FEATURES, PermissionTable
from tenant_access.features.roles import store as role_store
from tenant_access.features.users import store as user_store
from tenant_access.features.users.models import UserType

from utils import make_role


VIEWER = PermissionTable({"lead_management": ["read"]})
EDITOR = PermissionTable({"lead_management": ["update"]})
MANAGER = PermissionTable({"lead_management": ["manage"]})

EVERY_CHECK = [(feature, action.value) for feature in FEATURES for action in ALL_ACTIONS]


def principal(**kwargs) -> Principal:
    kwargs.setdefault("user_id", "u1")
    kwargs.setdefault("tenant_id", "t1")
    kwargs.setdefault("user_type", UserType.TENANT_USER)
    return Principal(**kwargs)


class TestHasPermission:
    """Decision order: inactive, operator, union."""

    def test_inactive_principal_is_denied_everything(self):
        p = principal(
            is_active=False,
            custom_permissions=MANAGER,
            role_ids=frozenset({"r1"}),
            roles={"r1": PermissionTable({f: ["manage"] for f in FEATURES})},
        )
        assert not any(has_permission(p, f, a) for f, a in EVERY_CHECK)

    def test_inactive_operator_is_denied(self):
        p = principal(user_type=UserType.SAAS_OWNER, tenant_id=None, is_active=False)
        assert not has_permission(p, "lead_management", "read")

    @pytest.mark.parametrize("user_type", [UserType.SAAS_OWNER, UserType.SAAS_ADMIN])
    def test_operator_is_allowed_everything(self, user_type):
        p = principal(user_type=user_type, tenant_id=None)
        assert all(has_permission(p, f, a) for f, a in EVERY_CHECK)
        assert has_permission(p, "not_a_feature", "read")

    def test_tenant_admin_type_alone_grants_nothing(self):
        p = principal(user_type=UserType.TENANT_ADMIN)
        assert not has_permission(p, "user_management", "read")

    def test_principal_without_sources_is_denied_everything(self):
        p = principal()
        assert not any(has_permission(p, f, a) for f, a in EVERY_CHECK)

    def test_custom_permissions_grant(self):
        p = principal(custom_permissions=VIEWER)
        assert has_permission(p, "lead_management", "read")
        assert not has_permission(p, "lead_management", "update")

    def test_direct_role_grants(self):
        p = principal(role_ids=frozenset({"viewer"}), roles={"viewer": VIEWER})
        assert has_permission(p, "lead_management", "read")

    def test_group_role_grants(self):
        p = principal(
            groups=(GroupGrant(group_id="g1", role_ids=frozenset({"viewer"})),),
            roles={"viewer": VIEWER},
        )
        assert has_permission(p, "lead_management", "read")

    def test_group_own_permissions_grant(self):
        p = principal(groups=(GroupGrant(group_id="g1", permissions=EDITOR),))
        assert has_permission(p, "lead_management", "update")

    @pytest.mark.parametrize("source", ["custom", "role", "group_role", "group_own"])
    def test_manage_from_any_source_implies_every_action(self, source):
        kwargs = {
            "custom": {"custom_permissions": MANAGER},
            "role": {"role_ids": frozenset({"m"}), "roles": {"m": MANAGER}},
            "group_role": {
                "groups": (GroupGrant(group_id="g1", role_ids=frozenset({"m"})),),
                "roles": {"m": MANAGER},
            },
            "group_own": {"groups": (GroupGrant(group_id="g1", permissions=MANAGER),)},
        }[source]
        p = principal(**kwargs)
        assert all(has_permission(p, "lead_management", a) for a in ALL_ACTIONS)

    def test_dangling_role_ids_are_skipped(self):
        p = principal(
            role_ids=frozenset({"deleted", "viewer"}),
            groups=(GroupGrant(group_id="g1", role_ids=frozenset({"gone"})),),
            roles={"viewer": VIEWER},
        )
        assert has_permission(p, "lead_management", "read")
        assert not has_permission(p, "lead_management", "update")

    def test_unknown_feature_or_action_is_denied_without_raising(self):
        p = principal(custom_permissions=MANAGER)
        assert not has_permission(p, "no_such_feature", "read")
        assert not has_permission(p, "lead_management", "bogus")

    def test_role_order_does_not_matter(self):
        tables = {"r1": VIEWER, "r2": EDITOR, "r3": PermissionTable({"task_management": ["create"]})}
        results = set()
        for order in itertools.permutations(tables):
            p = principal(role_ids=frozenset(order), roles={rid: tables[rid] for rid in order})
            results.add(effective_permissions(p))
        assert len(results) == 1


class TestAnyAll:

    def test_any_and_all(self):
        p = principal(custom_permissions=VIEWER)
        checks = [("lead_management", "read"), ("lead_management", "delete")]
        assert has_any_permission(p, checks)
        assert not has_all_permissions(p, checks)
        assert has_all_permissions(p, checks[:1])
        assert not has_any_permission(p, [])


class TestPermissionSources:

    def test_sources_break_down_by_origin(self):
        p = principal(
            custom_permissions=EDITOR,
            role_ids=frozenset({"viewer", "missing"}),
            groups=(GroupGrant(group_id="g1", role_ids=frozenset({"viewer"}), permissions=MANAGER),),
            roles={"viewer": VIEWER},
        )
        sources = permission_sources(p)
        assert sources["custom"] == EDITOR
        assert sources["roles"] == {"viewer": VIEWER}
        assert sources["groups"]["g1"] == VIEWER | MANAGER


class TestLoadPrincipal:
    """Snapshots built from the database."""

    async def test_viewer_editor_scenario(self, db, tenant_ids):
        t1, _ = tenant_ids
        viewer = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        editor = await make_role(db, t1, "Editor", {"lead_management": ["update"]})
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        g1 = await group_store.create_group(db, tenant_id=t1, name="G1", slug="g1")
        await group_store.add_members(db, g1.id, [u1.id])
        await group_store.assign_roles(db, g1.id, [viewer])

        assert await check_permission(db, u1.id, "lead_management", "read")
        assert not await check_permission(db, u1.id, "lead_management", "update")

        await group_store.assign_roles(db, g1.id, [editor])

        assert await check_permission(db, u1.id, "lead_management", "update")
        assert await check_permission(db, u1.id, "lead_management", "read")

    async def test_parent_group_does_not_propagate(self, db, tenant_ids):
        t1, _ = tenant_ids
        viewer = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        parent = await group_store.create_group(
            db, tenant_id=t1, name="Parent", slug="parent", group_permissions=EDITOR,
        )
        await group_store.assign_roles(db, parent.id, [viewer])
        child = await group_store.create_group(db, tenant_id=t1, name="Child", slug="child", parent_group_id=parent.id)
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        await group_store.add_members(db, child.id, [u1.id])

        assert not await check_permission(db, u1.id, "lead_management", "read")
        assert not await check_permission(db, u1.id, "lead_management", "update")

    async def test_deleted_role_stops_granting(self, db, tenant_ids):
        t1, _ = tenant_ids
        viewer = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        g1 = await group_store.create_group(db, tenant_id=t1, name="G1", slug="g1")
        await group_store.add_members(db, g1.id, [u1.id])
        await group_store.assign_roles(db, g1.id, [viewer])
        await user_store.assign_user_roles(db, u1.id, [viewer])
        assert await check_permission(db, u1.id, "lead_management", "read")

        await role_store.delete_role(db, viewer)

        assert not await check_permission(db, u1.id, "lead_management", "read")
        # The references are still there
        assert viewer in await group_store.get_role_ids(db, g1.id)
        assert viewer in await user_store.get_user_role_ids(db, u1.id)

    async def test_role_update_applies_to_next_check(self, db, tenant_ids):
        t1, _ = tenant_ids
        viewer = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        await user_store.assign_user_roles(db, u1.id, [viewer])
        assert not await check_permission(db, u1.id, "lead_management", "export")

        await role_store.update_role(db, viewer, {"permissions": PermissionTable({"lead_management": ["read", "export"]})})

        assert await check_permission(db, u1.id, "lead_management", "export")

    async def test_deactivated_user_is_denied(self, db, tenant_ids):
        t1, _ = tenant_ids
        u1 = await user_store.create_user(
            db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1,
            custom_permissions=MANAGER,
        )
        assert await check_permission(db, u1.id, "lead_management", "delete")
        await user_store.deactivate_user(db, u1.id)
        assert not await check_permission(db, u1.id, "lead_management", "delete")

    async def test_inactive_group_contributes_nothing(self, db, tenant_ids):
        t1, _ = tenant_ids
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        g1 = await group_store.create_group(db, tenant_id=t1, name="G1", slug="g1", group_permissions=VIEWER)
        await group_store.add_members(db, g1.id, [u1.id])
        assert await check_permission(db, u1.id, "lead_management", "read")

        await group_store.update_group(db, g1.id, {"is_active": False})

        assert not await check_permission(db, u1.id, "lead_management", "read")

    async def test_system_role_applies_in_any_tenant(self, db, tenant_ids):
        t1, t2 = tenant_ids
        system_viewer = await make_role(db, None, "Viewer", {"lead_management": ["read"]})
        for tenant_id, email in ((t1, "a@t1.acme.io"), (t2, "b@t2.acme.io")):
            user = await user_store.create_user(db, email=email, name="U", user_type=UserType.TENANT_USER, tenant_id=tenant_id)
            await user_store.assign_user_roles(db, user.id, [system_viewer])
            assert await check_permission(db, user.id, "lead_management", "read")

    async def test_snapshot_contents(self, db, tenant_ids):
        t1, _ = tenant_ids
        viewer = await make_role(db, t1, "Viewer", {"lead_management": ["read"]})
        u1 = await user_store.create_user(db, email="u1@t1.acme.io", name="U1", user_type=UserType.TENANT_USER, tenant_id=t1)
        g1 = await group_store.create_group(db, tenant_id=t1, name="G1", slug="g1")
        await group_store.add_members(db, g1.id, [u1.id])
        await group_store.assign_roles(db, g1.id, [viewer])

        snapshot = await load_principal(db, u1.id)

        assert snapshot.tenant_id == t1
        assert snapshot.role_ids == frozenset()
        assert snapshot.custom_permissions == EMPTY_TABLE
        assert [g.group_id for g in snapshot.groups] == [g1.id]
        assert snapshot.roles == {viewer: VIEWER}

    async def test_missing_user_is_denied(self, db):
        assert await load_principal(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ") is None
        assert not await check_permission(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ", "lead_management", "read")
