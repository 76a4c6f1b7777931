from fastapi import APIRouter, Depends

from agence_api.modules.auth.dependencies import get_auth_context
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.permissions.dependencies import get_permission_resolver
from agence_api.modules.permissions.schemas import ModuleAccessOut, MyPermissionsOut
from agence_api.modules.permissions.service import PermissionResolver
from agence_api.modules.registry.models import Role

permissions_router = APIRouter(prefix="/permissions", tags=["Permissions"])


@permissions_router.get("/me", response_model=MyPermissionsOut)
def get_my_permissions(
    auth_context: AuthContext = Depends(get_auth_context),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """
    Modules visibles par l'utilisateur courant avec leur statut
    (active / pending / inactive) et les actions autorisées.
    """
    principal, agency = auth_context.principal, auth_context.agency
    accessible = resolver.accessible_modules(principal, agency)

    # Un compte d'agence voit tout le catalogue de l'agence ; le superadmin ses modules
    candidates = (
        resolver.registry.superadmin_modules()
        if auth_context.role == Role.SUPERADMIN
        else resolver.registry.agency_modules()
    )
    modules = [
        ModuleAccessOut(
            id=module.id,
            name=module.name,
            status=resolver.module_status(principal, agency, module.id),
            actions=[a for a in module.actions
                     if a in resolver.module_actions(principal, agency, module.id)],
        )
        for module in candidates
    ]
    return MyPermissionsOut(
        user_id=auth_context.user_id,
        role=auth_context.role,
        agency_id=auth_context.agency_id,
        accessible_modules=resolver.ordered(accessible),
        modules=modules,
    )
