"""
Policy Loader (``stock_config.loader``).

Responsibility
--------------
Reads a YAML policy file and parses it into a ``LedgerPolicy``.  Runtime
callers go through ``stock_config.get_active_policy()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import METADATA_KEYS, POLICY_KEYS, LedgerPolicy


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_policy(data: dict[str, Any]) -> LedgerPolicy:
    """Parse a LedgerPolicy from a dict, ignoring the file's identity keys."""
    if not isinstance(data, dict):
        raise ValueError(f"Policy must be a mapping, got {type(data).__name__}")
    unknown = set(data) - POLICY_KEYS - METADATA_KEYS
    if unknown:
        raise ValueError(f"Unknown policy keys: {sorted(unknown)}")
    prefixes = data.get("document_prefixes")
    if prefixes is not None and not isinstance(prefixes, dict):
        raise ValueError("document_prefixes must be a mapping")
    return LedgerPolicy.from_dict({k: v for k, v in data.items() if k in POLICY_KEYS})


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_policy(path: Path) -> tuple[LedgerPolicy, dict[str, Any]]:
    """Load and parse a policy file, returning the policy and its raw data."""
    data = load_yaml_file(path)
    return parse_policy(data), data
