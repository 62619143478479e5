"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_policy()`` is the only way services obtain a
    ``LedgerPolicy`` at runtime.  The kernel never imports this package;
    callers load a policy here and inject it into the kernel services.

Resolution order:
    1. The ``path`` argument.
    2. The ``STOCK_POLICY_FILE`` environment variable.
    3. ``stock_config/policies/default.yaml``.

Audit relevance:
    Every load emits a ``STOCK_POLICY_TRACE`` log entry with the file, the
    policy id/version and a checksum of the parsed data, tying postings to
    the configuration that governed them.
"""

import os
from pathlib import Path

from stock_config.loader import compute_checksum, load_policy
from stock_config.schema import LedgerPolicy
from stock_kernel.logging_config import get_logger

_logger = get_logger("config")

POLICY_FILE_ENV = "STOCK_POLICY_FILE"
DEFAULT_POLICY_PATH = Path(__file__).parent / "policies" / "default.yaml"


def get_active_policy(path: Path | str | None = None) -> LedgerPolicy:
    """
    Load the ledger policy.

    Raises:
        FileNotFoundError: the policy file does not exist.
        ValueError: the file contains unknown keys or invalid values.
    """
    source = Path(path or os.environ.get(POLICY_FILE_ENV) or DEFAULT_POLICY_PATH)
    policy, data = load_policy(source)

    _logger.info(
        "STOCK_POLICY_TRACE",
        extra={
            "trace_type": "STOCK_POLICY_TRACE",
            "policy_file": str(source),
            "policy_id": data.get("policy_id"),
            "policy_version": data.get("version"),
            "checksum": compute_checksum(data),
            "negative_stock_policy": policy.negative_stock_policy,
        },
    )
    return policy


__all__ = ["DEFAULT_POLICY_PATH", "LedgerPolicy", "POLICY_FILE_ENV", "get_active_policy"]
