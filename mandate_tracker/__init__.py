"""
Mandate Tracker - Source Package

Tracks recurring monthly obligations ("mandates": rent, subscriptions,
EMIs) and reconciles each one against a single ledger of transactions.

DESIGN PRINCIPLES:
1. Settlement is derived from stored facts, never stored as a flag
2. Every write that touches both stores is all-or-nothing
3. One writer: the reconciliation engine
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Mandate Tracker Team"
