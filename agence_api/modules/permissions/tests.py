"""
Tests du PermissionResolver et de la garde require_permission
"""
from uuid import uuid4

import pytest

from agence_api.conftest import auth_headers, make_user
from agence_api.modules.permissions.models import (
    Agent, AgencyAdmin, AgencyContext, ModulePermission, Superadmin,
)
from agence_api.modules.permissions.service import PermissionResolver
from agence_api.modules.registry.models import Action, ModuleStatus, Role
from agence_api.modules.registry.service import get_module_registry


@pytest.fixture
def resolver():
    return PermissionResolver(get_module_registry())


@pytest.fixture
def agency_id():
    return uuid4()


@pytest.fixture
def agency_context(agency_id):
    return AgencyContext(
        agency_id=agency_id,
        active_modules=frozenset({"caisse", "factures", "visa"}),
        requested_modules=frozenset({"hotel"}),
    )


def make_agent(agency_id, **records):
    return Agent(
        user_id=uuid4(),
        agency_id=agency_id,
        permissions=tuple(ModulePermission.from_record(m, a) for m, a in records.items()),
    )


class TestBaseModules:

    def test_agent_without_records_sees_base_modules(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id)
        assert resolver.accessible_modules(agent, agency_context) == frozenset({"dashboard", "profile"})

    def test_base_modules_for_every_principal(self, resolver, agency_id, agency_context):
        principals = [
            Superadmin(user_id=uuid4()),
            AgencyAdmin(user_id=uuid4(), agency_id=agency_id),
            make_agent(agency_id, clients=["lire"]),
        ]
        for principal in principals:
            accessible = resolver.accessible_modules(principal, agency_context)
            assert {"dashboard", "profile"} <= accessible


class TestAgentPermissions:

    def test_read_only_record(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id, clients=["lire"])
        assert resolver.has_permission(agent, agency_context, "clients", Action.READ) is True
        assert resolver.has_permission(agent, agency_context, "clients", Action.UPDATE) is False
        assert "clients" in resolver.accessible_modules(agent, agency_context)

    def test_record_without_read_grants_nothing_visible(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id, caisse=["creer"])
        assert "caisse" not in resolver.accessible_modules(agent, agency_context)
        assert resolver.has_permission(agent, agency_context, "caisse", Action.CREATE) is False

    def test_no_record_means_no_access(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id, clients=["lire"])
        assert resolver.has_permission(agent, agency_context, "factures", Action.READ) is False

    def test_unknown_actions_are_ignored(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id, clients=["lire", "voler"])
        assert resolver.module_actions(agent, agency_context, "clients") == frozenset({Action.READ})

    def test_actions_limited_to_declared_module_actions(self, resolver, agency_id, agency_context):
        agent = make_agent(agency_id, situation=["lire", "exporter"])
        assert resolver.module_actions(agent, agency_context, "situation") == frozenset({Action.READ, Action.EXPORT})


class TestAgencyAdminPermissions:

    def test_active_modules_grant_every_declared_action(self, resolver, agency_id, agency_context):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        for action in (Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE):
            assert resolver.has_permission(admin, agency_context, "caisse", action)
        assert not resolver.has_permission(admin, agency_context, "caisse", Action.EXPORT)

    def test_inactive_module_is_denied(self, resolver, agency_id, agency_context):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        assert not resolver.has_permission(admin, agency_context, "hotel", Action.READ)

    def test_missing_agency_context_falls_back_to_base(self, resolver, agency_id):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        assert resolver.accessible_modules(admin, None) == frozenset({"dashboard", "profile"})
        assert not resolver.has_permission(admin, None, "caisse", Action.READ)

    def test_foreign_agency_context_falls_back_to_base(self, resolver, agency_context):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=uuid4())
        assert resolver.accessible_modules(admin, agency_context) == frozenset({"dashboard", "profile"})

    def test_superadmin_only_module_never_granted(self, resolver, agency_id):
        context = AgencyContext(agency_id=agency_id, active_modules=frozenset({"agences"}))
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        assert "agences" not in resolver.accessible_modules(admin, context)


class TestSuperadminPermissions:

    def test_superadmin_modules_ignore_agency(self, resolver, agency_context):
        root = Superadmin(user_id=uuid4())
        accessible = resolver.accessible_modules(root, agency_context)
        assert {"agences", "audit", "logs", "rapports", "tickets"} <= accessible
        assert "caisse" not in accessible
        assert resolver.has_permission(root, None, "audit", Action.EXPORT)
        assert not resolver.has_permission(root, None, "audit", Action.DELETE)


class TestUnknownInputs:

    def test_unknown_module_is_inaccessible(self, resolver, agency_id, agency_context):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        assert resolver.has_permission(admin, agency_context, "inexistant", Action.READ) is False
        assert resolver.module_actions(admin, agency_context, "inexistant") == frozenset()
        assert resolver.module_status(admin, agency_context, "inexistant") == ModuleStatus.INACTIVE

    def test_unsupported_principal(self, resolver):
        with pytest.raises(TypeError):
            resolver.accessible_modules(object(), None)


class TestModuleStatus:

    def test_statuses_for_agency_admin(self, resolver, agency_id, agency_context):
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency_id)
        assert resolver.module_status(admin, agency_context, "visa") == ModuleStatus.ACTIVE
        assert resolver.module_status(admin, agency_context, "hotel") == ModuleStatus.PENDING
        assert resolver.module_status(admin, agency_context, "billets") == ModuleStatus.INACTIVE
        # essentiel mais non activé
        assert resolver.module_status(admin, agency_context, "clients") == ModuleStatus.ACTIVE

    def test_ordered_follows_registry(self, resolver):
        assert resolver.ordered({"caisse", "dashboard", "clients"}) == ["dashboard", "clients", "caisse"]


class TestPermissionRoutes:

    def test_my_permissions_for_agent(self, http_client, agent):
        response = http_client.get("/permissions/me", headers=auth_headers(agent))
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "agent"
        assert data["accessible_modules"] == ["dashboard", "profile", "clients"]
        clients = next(m for m in data["modules"] if m["id"] == "clients")
        assert clients["status"] == "active"
        assert clients["actions"] == ["lire"]

    def test_guard_denies_missing_action(self, http_client, agent, sample_client):
        response = http_client.get("/clients", headers=auth_headers(agent))
        assert response.status_code == 200

        response = http_client.patch(
            f"/clients/{sample_client.id}", json={"city": "Oran"}, headers=auth_headers(agent)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"

    def test_guard_denies_inactive_module(self, http_client, db_session, agency):
        admin = make_user(db_session, "owner@sahara.dz", Role.AGENCE, agency)
        response = http_client.get("/modules/visa", headers=auth_headers(admin))
        assert response.status_code == 200
        response = http_client.get("/caisse/solde", headers=auth_headers(admin))
        assert response.status_code == 200

        agency.active_modules = ["factures"]
        db_session.commit()
        response = http_client.get("/caisse/solde", headers=auth_headers(admin))
        assert response.status_code == 403
