"""
Dépendances d'authentification pour FastAPI.
"""
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from agence_api.common.exceptions import PermissionDeniedError
from agence_api.database.database import get_db
from agence_api.modules.agencies.models import Agency
from agence_api.modules.auth.models import User
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.auth.service import AuthService, build_principal
from agence_api.modules.auth.utils import decode_access_token
from agence_api.modules.registry.models import Role

# Security scheme
security = HTTPBearer()


class AuthDependencies:
    """Dépendances d'authentification réutilisables."""

    @staticmethod
    def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> User:
        """Utilisateur courant à partir du jeton JWT."""
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Impossible de valider les identifiants",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = decode_access_token(credentials.credentials)
            user_id = UUID(payload.get("sub"))
        except (jwt.PyJWTError, TypeError, ValueError):
            raise credentials_exception

        user = AuthService(db).get_user(user_id)
        if user is None or not user.is_active:
            raise credentials_exception
        return user

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        """
        Contexte complet : principal et, pour les comptes d'agence,
        l'état des modules de l'agence chargé une fois par requête.
        """
        user = AuthDependencies.get_current_user(credentials, db)
        principal = build_principal(user)

        agency_context = None
        if user.agency_id is not None:
            agency = db.query(Agency).filter(Agency.id == user.agency_id).first()
            if agency is None or not agency.is_active:
                raise PermissionDeniedError("Agence inactive ou introuvable", agency_id=user.agency_id)
            agency_context = agency.to_context()

        return AuthContext(
            user_id=user.id,
            role=user.role,
            principal=principal,
            agency_id=user.agency_id,
            agency=agency_context,
        )

    @staticmethod
    def require_role(*allowed_roles: Role):
        """Dépendance exigeant l'un des rôles donnés."""
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if auth_context.role not in allowed_roles:
                raise PermissionDeniedError(
                    f"Rôle requis : {', '.join(r.value for r in allowed_roles)}",
                    role=auth_context.role.value,
                )
            return auth_context
        return role_checker


# Instances de dépendances
get_current_user = AuthDependencies.get_current_user
get_auth_context = AuthDependencies.get_auth_context
require_role = AuthDependencies.require_role


def require_agency(auth_context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Contexte d'un compte rattaché à une agence."""
    if auth_context.agency_id is None:
        raise PermissionDeniedError("Cette opération nécessite une agence")
    return auth_context
