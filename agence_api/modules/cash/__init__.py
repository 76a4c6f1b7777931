"""
Caisse : grand livre des opérations d'une agence.

- Operation : écriture immuable (entrée / sortie), montant toujours positif
- CashLedgerService : écriture, annulation compensatoire, solde, rapport
- Routes /caisse protégées par le module "caisse"

Les paiements de factures et les mouvements fournisseurs écrivent ici
dans la même transaction que leur propre mise à jour.
"""
