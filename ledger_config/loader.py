"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a ledger YAML file and parses it into a ``LedgerConfig``.  The single
public entry point for runtime config is ``ledger_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError``.
* Invalid values  -> ``ValueError`` from ``LedgerConfig.__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerConfig

# (section, key) -> LedgerConfig field
_FIELD_MAP: dict[tuple[str, str], str] = {
    ("invoices", "default_currency"): "default_currency",
    ("invoices", "payment_terms_days"): "payment_terms_days",
    ("numbering", "invoice_prefix"): "invoice_number_prefix",
    ("numbering", "payment_prefix"): "payment_number_prefix",
    ("numbering", "padding"): "number_padding",
    ("payments", "providers"): "providers",
    ("payments", "async_providers"): "async_providers",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a raw YAML dict into a LedgerConfig.

    Missing keys keep the schema defaults; unknown keys are rejected so a
    typo never silently falls back to a default.
    """
    kwargs: dict[str, Any] = {}
    for section, values in data.items():
        if not isinstance(values, dict):
            raise ValueError(f"Section '{section}' must be a mapping")
        for key, value in values.items():
            field_name = _FIELD_MAP.get((section, key))
            if field_name is None:
                raise ValueError(f"Unknown configuration key: {section}.{key}")
            if isinstance(value, list):
                value = tuple(value)
            kwargs[field_name] = value
    return LedgerConfig(**kwargs)


def load_ledger_config(path: Path | str) -> LedgerConfig:
    """Load and parse a ledger YAML file."""
    return parse_ledger_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
