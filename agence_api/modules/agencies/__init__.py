"""
Agences (tenants) : modules actifs et demandes d'activation.
"""
