"""
Résolution des permissions.

Un principal (Superadmin, AgencyAdmin, Agent) et le contexte d'agence
déjà chargé suffisent à décider :

- des modules accessibles (``accessible_modules``) ;
- de l'autorisation d'une action (``has_permission``) ;
- du statut d'un module pour l'affichage (``module_status``).

``require_permission(module, action)`` expose ces règles aux routers
FastAPI sous forme de dépendance.
"""
