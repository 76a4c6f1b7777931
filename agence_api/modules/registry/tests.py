"""
Tests du registre des modules
"""
import pytest

from agence_api.conftest import auth_headers
from agence_api.modules.registry.catalog import BASE_MODULES
from agence_api.modules.registry.models import Action, ModuleCategory, Role
from agence_api.modules.registry.service import ModuleRegistry, get_module_registry


@pytest.fixture
def registry():
    return get_module_registry()


class TestModuleRegistry:

    def test_registry_is_loaded_once(self):
        assert get_module_registry() is get_module_registry()

    def test_lookup(self, registry):
        caisse = registry.get("caisse")
        assert caisse is not None
        assert caisse.category == ModuleCategory.COMPTABILITE
        assert caisse.essential is True
        assert "caisse" in registry
        assert registry.get("inexistant") is None
        assert "inexistant" not in registry

    def test_ids_are_unique(self, registry):
        ids = registry.all_ids()
        assert len(ids) == len(set(ids)) == len(registry)

    def test_duplicate_ids_rejected(self, registry):
        caisse = registry.get("caisse")
        with pytest.raises(ValueError):
            ModuleRegistry([caisse, caisse])

    def test_base_modules_open_to_every_role(self, registry):
        assert registry.base_modules == frozenset(BASE_MODULES)
        for module_id in BASE_MODULES:
            for role in Role:
                assert registry.get(module_id).is_available_to(role)

    def test_superadmin_only_modules_excluded_from_agency_catalog(self, registry):
        agency_ids = {m.id for m in registry.agency_modules()}
        assert "agences" not in agency_ids
        assert "audit" not in agency_ids
        assert {"caisse", "factures", "clients", "fournisseurs"} <= agency_ids

    def test_agents_module_reserved_to_agency_admin(self, registry):
        agents = registry.get("agents")
        assert agents.is_available_to(Role.AGENCE)
        assert not agents.is_available_to(Role.AGENT)

    def test_declared_actions(self, registry):
        assert registry.get("clients").allows(Action.DELETE)
        assert not registry.get("situation").allows(Action.CREATE)
        assert registry.get("situation").allows(Action.EXPORT)

    def test_unknown_ids(self, registry):
        assert registry.unknown_ids(["caisse", "zzz", "aaa", "zzz"]) == ["aaa", "zzz"]

    def test_essentials(self, registry):
        essential_ids = {m.id for m in registry.essentials()}
        assert {"dashboard", "profile", "caisse", "factures", "clients", "fournisseurs"} == essential_ids


class TestModuleRoutes:

    def test_list_requires_authentication(self, http_client):
        response = http_client.get("/modules")
        assert response.status_code in (401, 403)

    def test_list_filtered_by_role(self, http_client, agency_admin):
        response = http_client.get("/modules", params={"role": "superadmin"}, headers=auth_headers(agency_admin))
        assert response.status_code == 200
        ids = [m["id"] for m in response.json()["modules"]]
        assert "agences" in ids
        assert "caisse" not in ids

    def test_get_unknown_module(self, http_client, agency_admin):
        response = http_client.get("/modules/inexistant", headers=auth_headers(agency_admin))
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"
