"""
Tests des agences et du cycle de vie de leurs modules
"""
from uuid import uuid4

import pytest

from agence_api.common.exceptions import InvalidStateError, NotFoundError, ValidationError
from agence_api.conftest import auth_headers
from agence_api.modules.agencies.schemas import AgencyAdminCreate, AgencyCreate
from agence_api.modules.agencies.service import AgencyService
from agence_api.modules.auth.models import User
from agence_api.modules.permissions.models import AgencyAdmin
from agence_api.modules.permissions.service import PermissionResolver
from agence_api.modules.registry.models import Action, ModuleStatus, Role
from agence_api.modules.registry.service import get_module_registry


class TestAgencyService:

    def test_create_agency_activates_essentials(self, db_session):
        agency = AgencyService(db_session).create_agency(AgencyCreate(
            name="Oasis Travel",
            active_modules=["visa"],
            admin=AgencyAdminCreate(email="Boss@Oasis.dz", password="motdepasse1",
                                    first_name="Nadia", last_name="Haddad"),
        ))
        assert agency.active_modules == ["clients", "fournisseurs", "factures", "caisse", "visa"]
        assert agency.requested_modules == []

        admin = db_session.query(User).filter(User.email == "boss@oasis.dz").one()
        assert admin.role == Role.AGENCE
        assert admin.agency_id == agency.id

    def test_create_agency_rejects_unknown_module(self, db_session):
        with pytest.raises(ValidationError):
            AgencyService(db_session).create_agency(AgencyCreate(name="Oasis", active_modules=["teleportation"]))

    def test_create_agency_rejects_superadmin_module(self, db_session):
        with pytest.raises(ValidationError):
            AgencyService(db_session).create_agency(AgencyCreate(name="Oasis", active_modules=["audit"]))

    def test_request_ignores_active_and_duplicates(self, db_session, agency):
        service = AgencyService(db_session)
        agency = service.request_modules(agency.id, ["visa", "caisse", "visa", "dashboard"])
        assert agency.requested_modules == ["visa"]

        agency = service.request_modules(agency.id, ["visa", "hotel"])
        assert agency.requested_modules == ["visa", "hotel"]

    def test_approve_selected(self, db_session, agency):
        service = AgencyService(db_session)
        service.request_modules(agency.id, ["visa", "hotel"])
        agency = service.approve_modules(agency.id, ["hotel"])
        assert "hotel" in agency.active_modules
        assert agency.requested_modules == ["visa"]

    def test_approve_all_pending(self, db_session, agency):
        service = AgencyService(db_session)
        service.request_modules(agency.id, ["visa", "hotel"])
        agency = service.approve_modules(agency.id)
        assert {"visa", "hotel"} <= set(agency.active_modules)
        assert agency.requested_modules == []

    def test_approve_not_pending(self, db_session, agency):
        with pytest.raises(InvalidStateError):
            AgencyService(db_session).approve_modules(agency.id, ["visa"])

    def test_reject(self, db_session, agency):
        service = AgencyService(db_session)
        service.request_modules(agency.id, ["visa"])
        agency = service.reject_modules(agency.id)
        assert agency.requested_modules == []
        assert "visa" not in agency.active_modules

    def test_deactivate(self, db_session, agency):
        service = AgencyService(db_session)
        service.request_modules(agency.id, ["visa"])
        service.approve_modules(agency.id)
        agency = service.deactivate_module(agency.id, "visa")
        assert "visa" not in agency.active_modules

        with pytest.raises(InvalidStateError):
            service.deactivate_module(agency.id, "visa")
        with pytest.raises(ValidationError):
            service.deactivate_module(agency.id, "dashboard")

    def test_essential_module_cannot_be_deactivated(self, db_session, agency):
        service = AgencyService(db_session)
        with pytest.raises(ValidationError):
            service.deactivate_module(agency.id, "caisse")

        db_session.expire_all()
        admin = AgencyAdmin(user_id=uuid4(), agency_id=agency.id)
        context = service.load_context(agency.id)
        resolver = PermissionResolver(get_module_registry())
        assert resolver.module_status(admin, context, "caisse") == ModuleStatus.ACTIVE
        assert resolver.has_permission(admin, context, "caisse", Action.READ)

    def test_unknown_agency(self, db_session):
        with pytest.raises(NotFoundError):
            AgencyService(db_session).get_agency(uuid4())

    def test_context(self, db_session, agency):
        context = AgencyService(db_session).load_context(agency.id)
        assert context.agency_id == agency.id
        assert "caisse" in context.active_modules


class TestAgencyRoutes:

    def test_request_then_approve(self, http_client, agency, agency_admin, superadmin):
        response = http_client.post(
            "/agences/me/modules/demandes", json={"modules": ["visa"]}, headers=auth_headers(agency_admin)
        )
        assert response.status_code == 200
        assert response.json()["requested_modules"] == ["visa"]

        permissions = http_client.get("/permissions/me", headers=auth_headers(agency_admin)).json()
        visa = next(m for m in permissions["modules"] if m["id"] == "visa")
        assert visa["status"] == "pending"

        response = http_client.post(
            f"/agences/{agency.id}/modules/approuver", json={}, headers=auth_headers(superadmin)
        )
        assert response.status_code == 200
        assert "visa" in response.json()["active_modules"]

    def test_agency_admin_cannot_approve(self, http_client, agency, agency_admin):
        response = http_client.post(
            f"/agences/{agency.id}/modules/approuver", json={}, headers=auth_headers(agency_admin)
        )
        assert response.status_code == 403

    def test_superadmin_has_no_agency(self, http_client, superadmin):
        response = http_client.get("/agences/me", headers=auth_headers(superadmin))
        assert response.status_code == 403

    def test_list_agencies(self, http_client, agency, other_agency, superadmin):
        response = http_client.get("/agences", headers=auth_headers(superadmin))
        assert response.status_code == 200
        assert [a["name"] for a in response.json()] == ["Atlas Tours", "Sahara Voyages"]
