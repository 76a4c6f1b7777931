"""
Journal d'audit : une entrée par écriture au grand livre de caisse.

Les entrées sont ajoutées dans la transaction de l'écriture auditée et
consultables par le superadmin via /audit (module "audit").
"""
