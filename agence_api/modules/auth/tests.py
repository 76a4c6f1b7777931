"""
Tests d'authentification et de gestion des agents
"""
from datetime import timedelta

import jwt
import pytest

from agence_api.common.exceptions import PermissionDeniedError, ValidationError
from agence_api.conftest import auth_headers, make_user
from agence_api.modules.auth.schemas import PermissionIn
from agence_api.modules.auth.service import AuthService, build_principal
from agence_api.modules.auth.utils import create_access_token, decode_access_token, verify_password
from agence_api.modules.permissions.models import Agent, AgencyAdmin, Superadmin
from agence_api.modules.registry.models import Action, Role


@pytest.fixture
def agents_enabled(db_session, agency):
    agency.active_modules = list(agency.active_modules) + ["agents"]
    db_session.commit()
    return agency


class TestTokens:

    def test_roundtrip(self):
        token = create_access_token({"sub": "abc"})
        payload = decode_access_token(token)
        assert payload["sub"] == "abc"
        assert payload["type"] == "access"

    def test_expired_token(self):
        token = create_access_token({"sub": "abc"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_empty_hash_never_verifies(self):
        assert verify_password("secret123", "") is False


class TestPrincipal:

    def test_principal_per_role(self, superadmin, agency_admin, agent):
        assert isinstance(build_principal(superadmin), Superadmin)
        assert isinstance(build_principal(agency_admin), AgencyAdmin)
        principal = build_principal(agent)
        assert isinstance(principal, Agent)
        assert principal.permission_for("clients").actions == frozenset({Action.READ})

    def test_agency_role_without_agency(self, db_session, agency):
        user = make_user(db_session, "orphan@sahara.dz", Role.AGENT, agency)
        user.agency_id = None
        with pytest.raises(PermissionDeniedError):
            build_principal(user)


class TestAuthService:

    def test_authenticate(self, db_session, agency_admin):
        token = AuthService(db_session).authenticate("ADMIN@sahara.dz", "secret123")
        payload = decode_access_token(token.access_token)
        assert payload["sub"] == str(agency_admin.id)
        assert payload["role"] == "agence"
        assert agency_admin.last_login is not None

    def test_bad_password(self, db_session, agency_admin):
        with pytest.raises(PermissionDeniedError):
            AuthService(db_session).authenticate("admin@sahara.dz", "mauvais")

    def test_inactive_account(self, db_session, agency):
        make_user(db_session, "ancien@sahara.dz", Role.AGENT, agency, is_active=False)
        with pytest.raises(PermissionDeniedError):
            AuthService(db_session).authenticate("ancien@sahara.dz", "secret123")

    def test_duplicate_email(self, db_session, agency, agency_admin):
        with pytest.raises(ValidationError):
            AuthService(db_session).create_user("admin@sahara.dz", "secret123", "A", "B", Role.AGENT, agency.id)

    def test_agent_needs_agency(self, db_session):
        with pytest.raises(ValidationError):
            AuthService(db_session).create_user("x@sahara.dz", "secret123", "A", "B", Role.AGENT)

    def test_create_agent_with_permissions(self, db_session, agency):
        agent = AuthService(db_session).create_agent(
            agency.id, "guichet@sahara.dz", "secret123", "Sami", "Kaci",
            [PermissionIn(module="caisse", actions=[Action.READ, Action.CREATE])],
        )
        assert agent.role == Role.AGENT
        assert agent.permissions[0].module == "caisse"
        assert agent.permissions[0].actions == ["creer", "lire"]

    @pytest.mark.parametrize("permission", [
        PermissionIn(module="inexistant", actions=[Action.READ]),
        PermissionIn(module="agents", actions=[Action.READ]),
        PermissionIn(module="situation", actions=[Action.DELETE]),
    ])
    def test_invalid_agent_permissions(self, db_session, agency, permission):
        with pytest.raises(ValidationError):
            AuthService(db_session).create_agent(
                agency.id, "guichet@sahara.dz", "secret123", "Sami", "Kaci", [permission]
            )

    def test_replace_permissions(self, db_session, agency, agent):
        updated = AuthService(db_session).set_agent_permissions(
            agency.id, agent.id, [PermissionIn(module="factures", actions=[Action.READ])]
        )
        assert [(p.module, p.actions) for p in updated.permissions] == [("factures", ["lire"])]


class TestAuthRoutes:

    def test_login_and_me(self, http_client, agency_admin):
        response = http_client.post("/auth/login", json={"email": "admin@sahara.dz", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = http_client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["email"] == "admin@sahara.dz"

    def test_login_failure(self, http_client, agency_admin):
        response = http_client.post("/auth/login", json={"email": "admin@sahara.dz", "password": "faux"})
        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"

    def test_invalid_token(self, http_client):
        response = http_client.get("/auth/me", headers={"Authorization": "Bearer pas-un-jeton"})
        assert response.status_code == 401

    def test_inactive_agency_is_refused(self, http_client, db_session, agency, agency_admin):
        agency.is_active = False
        db_session.commit()
        response = http_client.get("/permissions/me", headers=auth_headers(agency_admin))
        assert response.status_code == 403

    def test_agent_management(self, http_client, agents_enabled, agency_admin):
        response = http_client.post("/auth/agents", headers=auth_headers(agency_admin), json={
            "email": "guichet@sahara.dz",
            "password": "secret123",
            "first_name": "Sami",
            "last_name": "Kaci",
            "permissions": [{"module": "clients", "actions": ["lire"]}],
        })
        assert response.status_code == 201
        agent_id = response.json()["id"]

        response = http_client.put(
            f"/auth/agents/{agent_id}/permissions",
            headers=auth_headers(agency_admin),
            json={"permissions": [{"module": "caisse", "actions": ["lire", "creer"]}]},
        )
        assert response.status_code == 200
        assert response.json()["permissions"][0]["module"] == "caisse"

        response = http_client.get("/auth/agents", headers=auth_headers(agency_admin))
        assert [a["email"] for a in response.json()] == ["guichet@sahara.dz"]

    def test_agent_cannot_manage_agents(self, http_client, agents_enabled, agent):
        response = http_client.get("/auth/agents", headers=auth_headers(agent))
        assert response.status_code == 403
