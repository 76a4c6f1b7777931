#!/usr/bin/env python3
"""
Maintenance de la base de données : création des tables et
montée de version des fournisseurs.
"""
import sys
from pathlib import Path

# Ajouter le répertoire racine au path
root_dir = Path(__file__).parent
sys.path.insert(0, str(root_dir))

import logging

from agence_api.database.database import Base, SessionLocal, engine
from agence_api.modules.suppliers.migrations import upgrade_all_suppliers

import agence_api.modules.agencies.models  # noqa: F401
import agence_api.modules.auth.models  # noqa: F401
import agence_api.modules.clients.models  # noqa: F401
import agence_api.modules.suppliers.models  # noqa: F401
import agence_api.modules.cash.models  # noqa: F401
import agence_api.modules.invoices.models  # noqa: F401
import agence_api.modules.audit.models  # noqa: F401

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def create_tables():
    """Créer les tables manquantes."""
    Base.metadata.create_all(bind=engine)
    print("Tables créées")


def upgrade_suppliers(batch_size: int = 500):
    """Migrer les fournisseurs vers le schéma courant (dette / crédit séparés)."""
    db = SessionLocal()
    try:
        count = upgrade_all_suppliers(db, batch_size=batch_size)
        print(f"{count} fournisseur(s) migré(s)")
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage :")
        print("  python migrate.py create-tables        # Créer les tables")
        print("  python migrate.py suppliers [lot]      # Migrer les fournisseurs")
        sys.exit(1)

    command = sys.argv[1]
    if command == "create-tables":
        create_tables()
    elif command == "suppliers":
        upgrade_suppliers(int(sys.argv[2]) if len(sys.argv) > 2 else 500)
    else:
        print(f"Commande inconnue : {command}")
        sys.exit(1)
