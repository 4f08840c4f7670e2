"""
Natillera - Ledger & Accrual Engine

Administrative core for a rotating savings-and-credit group ("natillera"):
one running cash balance, late-fee penalties on overdue dues, daily simple
interest on internal loans and the year-end settlement ("liquidación").

PRINCIPLES:
1. Every money-affecting event produces a consistent before/after balance
2. History is never edited in place; corrections are compensating entries
3. A record update and its ledger movement commit together or not at all
4. Every command is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Natillera Team"
