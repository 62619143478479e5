"""
Stock Kernel

The inventory ledger core of a warehouse / manufacturing ERP:
- Stock aggregate per item / warehouse / bin with weighted-average cost
- Append-only transaction register (DTR) with running balances
- Atomic stock-mutation documents (GRN, MIN, MRN, transfer, adjustment,
  production backflush)
- Race-free sequential document numbering
"""

__version__ = "0.1.0"
