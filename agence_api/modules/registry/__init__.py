"""
Registre statique des modules fonctionnels (identifiant, catégorie,
rôles éligibles, actions déclarées).
"""
