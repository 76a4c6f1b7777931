"""
Montée de version du schéma fournisseur.

v1 : un seul champ ``solde`` (legacy_balance).
v2 : debt_balance et credit_balance séparés, legacy_balance vidé.

Chaque étape est appliquée une seule fois, à la lecture par
SupplierService ou en masse par ``python migrate.py suppliers``.
"""
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from agence_api.modules.suppliers.models import SUPPLIER_SCHEMA_VERSION, Supplier

logger = logging.getLogger(__name__)


def _upgrade_v1_to_v2(supplier: Supplier):
    if supplier.legacy_balance is not None:
        # l'ancien solde représentait la dette envers le fournisseur
        supplier.debt_balance = Decimal(supplier.legacy_balance)
        supplier.legacy_balance = None
    if supplier.debt_balance is None:
        supplier.debt_balance = Decimal("0.00")
    if supplier.credit_balance is None:
        supplier.credit_balance = Decimal("0.00")


UPGRADES = {
    1: _upgrade_v1_to_v2,
}


def needs_upgrade(supplier: Supplier) -> bool:
    return (supplier.schema_version or 1) < SUPPLIER_SCHEMA_VERSION


def upgrade_supplier(supplier: Supplier) -> bool:
    """Applique les étapes manquantes ; True si le fournisseur a changé."""
    version = supplier.schema_version or 1
    if version >= SUPPLIER_SCHEMA_VERSION:
        return False

    while version < SUPPLIER_SCHEMA_VERSION:
        step = UPGRADES.get(version)
        if step is None:
            raise RuntimeError(f"No upgrade step from supplier schema v{version}")
        step(supplier)
        version += 1

    logger.info(f"Supplier {supplier.id} upgraded to schema v{version}")
    supplier.schema_version = version
    return True


def upgrade_all_suppliers(db: Session, batch_size: int = 500) -> int:
    """Migration en masse ; commit par lot. Retourne le nombre de fournisseurs migrés."""
    upgraded = 0
    while True:
        batch = db.query(Supplier).filter(
            (Supplier.schema_version < SUPPLIER_SCHEMA_VERSION) | (Supplier.schema_version.is_(None))
        ).limit(batch_size).all()
        if not batch:
            break
        for supplier in batch:
            if upgrade_supplier(supplier):
                upgraded += 1
        db.commit()
    logger.info(f"{upgraded} supplier(s) upgraded to schema v{SUPPLIER_SCHEMA_VERSION}")
    return upgraded
