"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.document_selector import DocumentSelector
from stock_kernel.selectors.feasibility_selector import FeasibilitySelector
from stock_kernel.selectors.ledger_selector import BalanceDiscrepancy, LedgerSelector
from stock_kernel.selectors.stock_selector import ReorderAlert, StockSelector

__all__ = [
    "BalanceDiscrepancy",
    "DocumentSelector",
    "FeasibilitySelector",
    "LedgerSelector",
    "ReorderAlert",
    "StockSelector",
]
