"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned ``LedgerConfig``
    by injection and never read files or environment variables themselves.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path

from ledger_config.loader import compute_checksum, load_ledger_config
from ledger_config.schema import LedgerConfig

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the packaged defaults.yaml.

    Returns:
        A validated, frozen LedgerConfig.
    """
    source = Path(path) if path is not None else _DEFAULTS_FILE
    config = load_ledger_config(source)
    _logger.info(
        "ledger_config_loaded",
        extra={
            "source": str(source),
            "checksum": compute_checksum(asdict(config)),
            "default_currency": config.default_currency,
        },
    )
    return config


__all__ = ["LedgerConfig", "get_active_config", "load_ledger_config"]
