"""
Ledger Policy Schema.

The tunable rules of the stock ledger: what happens when an outbound movement
exceeds available stock, how document numbers are printed, and the default
unit of measure.  Values are loaded from YAML by ``stock_config``; kernel
services fall back to ``LedgerPolicy()`` when none is injected.
"""

from dataclasses import dataclass, field
from typing import Self

from stock_kernel.logging_config import get_logger

logger = get_logger("domain.policy")


NEGATIVE_STOCK_REJECT = "reject"
NEGATIVE_STOCK_CLAMP = "clamp"

VALID_NEGATIVE_STOCK_POLICIES = {NEGATIVE_STOCK_REJECT, NEGATIVE_STOCK_CLAMP}
VALID_COST_METHODS = {"weighted_average"}

DEFAULT_DOCUMENT_PREFIXES: dict[str, str] = {
    "GRN": "GRN",
    "MIN": "MIN",
    "MRN": "MRN",
    "TRF": "TRF",
    "ADJ": "ADJ",
    "BKF": "BKF",
    "PO": "PO",
    "WO": "WO",
}


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Configuration schema for the stock ledger.

    Override at instantiation, or load with ``stock_config.get_active_policy``:

        policy = LedgerPolicy(negative_stock_policy="clamp")
    """

    # "reject" raises InsufficientStockError; "clamp" floors quantity at zero
    negative_stock_policy: str = NEGATIVE_STOCK_REJECT

    default_uom: str = "PCS"

    # Digits of the running number in {PREFIX}-{YEAR}-{NNNN}
    number_width: int = 4
    document_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_DOCUMENT_PREFIXES)
    )

    cost_method: str = "weighted_average"

    def __post_init__(self):
        if self.negative_stock_policy not in VALID_NEGATIVE_STOCK_POLICIES:
            raise ValueError(
                f"negative_stock_policy must be one of {VALID_NEGATIVE_STOCK_POLICIES}, "
                f"got '{self.negative_stock_policy}'"
            )
        if self.cost_method not in VALID_COST_METHODS:
            raise ValueError(
                f"cost_method must be one of {VALID_COST_METHODS}, "
                f"got '{self.cost_method}'"
            )
        if self.number_width < 1:
            raise ValueError("number_width must be positive")
        if not self.default_uom:
            raise ValueError("default_uom cannot be empty")
        missing = set(DEFAULT_DOCUMENT_PREFIXES) - set(self.document_prefixes)
        if missing:
            raise ValueError(f"document_prefixes is missing keys: {sorted(missing)}")
        for key, prefix in self.document_prefixes.items():
            if not prefix or "-" in prefix:
                raise ValueError(
                    f"document prefix for {key} must be non-empty and contain no '-'"
                )

    @property
    def clamps_negative_stock(self) -> bool:
        return self.negative_stock_policy == NEGATIVE_STOCK_CLAMP

    def prefix_for(self, key: str) -> str:
        """Printed prefix for a document key (e.g. "TRF", "PO")."""
        try:
            return self.document_prefixes[key]
        except KeyError:
            raise ValueError(f"No document prefix configured for '{key}'") from None

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create a policy from a dictionary (e.g. a parsed YAML file)."""
        logger.info(
            "ledger_policy_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        prefixes = dict(DEFAULT_DOCUMENT_PREFIXES)
        prefixes.update(data.get("document_prefixes") or {})
        values = {k: v for k, v in data.items() if k != "document_prefixes"}
        return cls(document_prefixes=prefixes, **values)
