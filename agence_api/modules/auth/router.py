from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from agence_api.database.database import get_db
from agence_api.modules.auth.dependencies import get_current_user
from agence_api.modules.auth.models import User
from agence_api.modules.auth.schemas import (
    AgentCreate, AgentPermissionsUpdate, AuthContext, LoginRequest, TokenResponse, UserOut,
)
from agence_api.modules.auth.service import AuthService
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action

auth_router = APIRouter()


@auth_router.post("/login", response_model=TokenResponse)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Connexion par email / mot de passe ; retourne un jeton d'accès."""
    return AuthService(db).authenticate(credentials.email, credentials.password)


@auth_router.get("/me", response_model=UserOut)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@auth_router.get("/agents", response_model=List[UserOut])
def list_agents(
    auth_context: AuthContext = Depends(require_permission("agents", Action.READ)),
    db: Session = Depends(get_db),
):
    return AuthService(db).list_agents(auth_context.agency_id)


@auth_router.post("/agents", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_agent(
    agent_data: AgentCreate,
    auth_context: AuthContext = Depends(require_permission("agents", Action.CREATE)),
    db: Session = Depends(get_db),
):
    """Création d'un agent avec ses permissions par module."""
    return AuthService(db).create_agent(
        agency_id=auth_context.agency_id,
        email=agent_data.email,
        password=agent_data.password,
        first_name=agent_data.first_name,
        last_name=agent_data.last_name,
        permissions=agent_data.permissions,
    )


@auth_router.put("/agents/{agent_id}/permissions", response_model=UserOut)
def update_agent_permissions(
    agent_id: UUID,
    payload: AgentPermissionsUpdate,
    auth_context: AuthContext = Depends(require_permission("agents", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    return AuthService(db).set_agent_permissions(auth_context.agency_id, agent_id, payload.permissions)
