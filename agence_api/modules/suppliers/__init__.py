"""
Fournisseurs : dette (debt_balance) et crédit prépayé (credit_balance)
tenus séparément, avec montée de version du schéma à la lecture.
"""
