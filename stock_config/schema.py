"""
Configuration schema (``stock_config.schema``).

The ledger policy dataclass lives in the kernel so that services can default
to it without importing this package; it is re-exported here together with
the set of keys a policy file may contain.
"""

from stock_kernel.domain.policy import (
    DEFAULT_DOCUMENT_PREFIXES,
    NEGATIVE_STOCK_CLAMP,
    NEGATIVE_STOCK_REJECT,
    LedgerPolicy,
)

# Identity fields of a policy file; not part of LedgerPolicy
METADATA_KEYS = frozenset({"policy_id", "version"})

POLICY_KEYS = frozenset({
    "negative_stock_policy",
    "default_uom",
    "number_width",
    "document_prefixes",
    "cost_method",
})

__all__ = [
    "DEFAULT_DOCUMENT_PREFIXES",
    "LedgerPolicy",
    "METADATA_KEYS",
    "NEGATIVE_STOCK_CLAMP",
    "NEGATIVE_STOCK_REJECT",
    "POLICY_KEYS",
]
