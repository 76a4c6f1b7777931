"""
Module Factures

- Factures clients numérotées par agence (FAC-000001)
- Lignes HT / TVA / TTC
- Machine à états des paiements (payments.py) :
  paiement total, versement partiel, avoir, remboursement,
  annulation d'opération, annulation de facture
- Passage en retard (overdue) par tâche Celery quotidienne

Statuts : draft, sent, partially_paid, paid, overdue, cancelled.

Tables principales :
- invoices : factures
- invoice_line_items : lignes
- invoice_payments : traces des écritures de caisse liées
- invoice_sequences : numérotation par agence
"""
