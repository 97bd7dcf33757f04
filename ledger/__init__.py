"""
Family Ledger - Source Package

The transaction ledger and account reconciliation engine behind a
personal/family bookkeeping application.

DESIGN PRINCIPLES:
1. Validate everything → then mutate, never the other way round
2. One ledger operation = one atomic unit of work
3. Balances move only through the ledger's balance-effect rules
4. Every mutation and every rejection is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Ledger Team"
