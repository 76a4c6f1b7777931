"""
Gardes de routes basées sur le PermissionResolver.
"""
from functools import lru_cache
import logging

from fastapi import Depends

from agence_api.common.exceptions import PermissionDeniedError
from agence_api.modules.auth.dependencies import get_auth_context
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.permissions.service import PermissionResolver
from agence_api.modules.registry.models import Action
from agence_api.modules.registry.service import get_module_registry

logger = logging.getLogger(__name__)


@lru_cache
def get_permission_resolver() -> PermissionResolver:
    return PermissionResolver(get_module_registry())


def require_permission(module_id: str, action: Action):
    """
    Dépendance refusant la requête (403) si le principal ne dispose pas
    de ``action`` sur ``module_id``. Retourne le contexte d'authentification.
    """
    def permission_checker(
        auth_context: AuthContext = Depends(get_auth_context),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> AuthContext:
        if not resolver.has_permission(auth_context.principal, auth_context.agency, module_id, action):
            logger.warning(
                f"Permission denied: user={auth_context.user_id} module={module_id} action={action.value}"
            )
            raise PermissionDeniedError(
                f"Accès refusé au module {module_id} ({action.value})",
                module=module_id,
                action=action.value,
            )
        return auth_context
    return permission_checker
