"""
Catalogue complet des modules de l'application.
"""
from agence_api.modules.registry.models import Action, ModuleCategory, Role

# Modules toujours accessibles à tout utilisateur authentifié
BASE_MODULES = ("dashboard", "profile")

CRUD = (Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE)
READ_EXPORT = (Action.READ, Action.EXPORT)

ALL_ROLES = (Role.SUPERADMIN, Role.AGENCE, Role.AGENT)
AGENCY_ROLES = (Role.AGENCE, Role.AGENT)

# (id, nom, description, catégorie, essentiel, rôles, actions)
MODULES_CATALOG = [
    # Modules principaux
    ("dashboard", "Tableau de bord", "Vue d'ensemble de l'activité",
     ModuleCategory.PRINCIPAL, True, ALL_ROLES, (Action.READ,)),
    ("profile", "Profil", "Gestion du profil utilisateur",
     ModuleCategory.PRINCIPAL, True, ALL_ROLES, (Action.READ, Action.UPDATE)),

    # Clients
    ("clients", "Clients", "Gestion des clients et prospects",
     ModuleCategory.CLIENT, True, AGENCY_ROLES, CRUD),
    ("crm", "CRM", "Gestion des contacts et suivi commercial",
     ModuleCategory.CLIENT, False, AGENCY_ROLES, CRUD),

    # Fournisseurs
    ("fournisseurs", "Fournisseurs", "Gestion des partenaires et prestataires",
     ModuleCategory.FOURNISSEUR, True, AGENCY_ROLES, CRUD),

    # Prestations & services
    ("billets", "Billets d'avion", "Gestion des réservations aériennes",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("hotel", "Réservation d'hôtel", "Gestion des réservations hôtelières",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("visa", "Visa", "Gestion des demandes de visas",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("assurance", "Assurance", "Gestion des polices d'assurance",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("manifest", "Manifest", "Gestion des manifests",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("autre-prestation", "Autres prestations", "Gestion des services personnalisés",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),
    ("reservations", "Réservations", "Gestion des réservations",
     ModuleCategory.PRESTATIONS, False, AGENCY_ROLES, CRUD),

    # Voyage organisé
    ("packages", "Packages", "Création de packages voyage",
     ModuleCategory.VOYAGE, False, AGENCY_ROLES, CRUD),
    ("vitrine", "Vitrine", "Site web public de l'agence",
     ModuleCategory.VOYAGE, False, AGENCY_ROLES, (Action.READ, Action.CREATE, Action.UPDATE)),

    # Comptabilité & finance
    ("factures", "Factures", "Gestion des factures clients",
     ModuleCategory.COMPTABILITE, True, AGENCY_ROLES, CRUD),
    ("pre-factures", "Devis", "Gestion des devis",
     ModuleCategory.COMPTABILITE, False, AGENCY_ROLES, CRUD),
    ("caisse", "Caisse", "Gestion de caisse et trésorerie",
     ModuleCategory.COMPTABILITE, True, AGENCY_ROLES, CRUD),
    ("creances", "Réglement & Créance", "Suivi des impayés et relances",
     ModuleCategory.COMPTABILITE, False, AGENCY_ROLES, CRUD),

    # Analyse
    ("situation", "Situation", "Tableaux de bord et statistiques",
     ModuleCategory.ANALYSE, False, AGENCY_ROLES, READ_EXPORT),

    # Système
    ("todos", "Tâches", "Gestion des tâches et planning",
     ModuleCategory.SYSTEME, False, AGENCY_ROLES, CRUD),
    ("calendrier", "Calendrier", "Gestion du calendrier et rendez-vous",
     ModuleCategory.SYSTEME, False, AGENCY_ROLES, CRUD),

    # Administration
    ("agences", "Agences", "Gestion des agences partenaires",
     ModuleCategory.ADMINISTRATION, False, (Role.SUPERADMIN,), CRUD),
    ("agents", "Agents", "Gestion des agents de l'agence",
     ModuleCategory.ADMINISTRATION, False, (Role.AGENCE,), CRUD),
    ("tickets", "Support", "Gestion des tickets de support",
     ModuleCategory.ADMINISTRATION, False, (Role.SUPERADMIN,), CRUD),
    ("audit", "Audit & Sécurité", "Audit des actions utilisateurs",
     ModuleCategory.ADMINISTRATION, False, (Role.SUPERADMIN,), READ_EXPORT),
    ("logs", "Logs", "Consultation des logs système",
     ModuleCategory.ADMINISTRATION, False, (Role.SUPERADMIN,), READ_EXPORT),
    ("rapports", "Rapports", "Rapports et analyses système",
     ModuleCategory.ADMINISTRATION, False, (Role.SUPERADMIN,), READ_EXPORT),
]
