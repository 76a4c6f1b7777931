"""
Authentification : comptes (superadmin, administrateur d'agence, agent),
enregistrements de permissions des agents et jetons JWT.
"""
