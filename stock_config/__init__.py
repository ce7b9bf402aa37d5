"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way runtime code obtains
    configuration.  No other component reads configuration files or
    environment variables.

Architecture position:
    Configuration -- sits above ``stock_kernel`` and below
    ``stock_services``.  The kernel never imports from ``stock_config``;
    services translate the configuration into kernel inputs (for example
    ``StockConfiguration.reference_rules()`` for LedgerStore).

Invariants enforced:
    - Single entrypoint.
    - Validation before use: an invalid set raises ``ValueError`` listing
      every problem.
    - Deterministic checksum of the source YAML.
    - ``STOCK_LEDGER_DATABASE_URL`` overrides the set's database URL.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with that name.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every call emits a ``STOCK_CONFIG_TRACE`` record with the config id,
    version and checksum, tying each report to the configuration that
    shaped it.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from stock_config.loader import load_configuration_set
from stock_config.schema import StockConfiguration
from stock_config.validator import validate_configuration

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DATABASE_URL_ENV = "STOCK_LEDGER_DATABASE_URL"


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> StockConfiguration:
    """
    Load, validate and return the named configuration set.

    Args:
        name: Sub-directory of the sets directory holding ``root.yaml``.
        config_dir: Override for the sets directory (tests, tooling).

    Raises:
        FileNotFoundError: No such configuration set.
        ValueError: The set failed validation.
    """
    set_dir = (config_dir or _DEFAULT_CONFIG_DIR) / name
    if not (set_dir / "root.yaml").is_file():
        raise FileNotFoundError(f"Configuration set not found: {set_dir}")

    config = load_configuration_set(set_dir)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=database_url),
        )

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "reference_type_count": len(config.reference_types),
            "snapshots_enabled": config.snapshots.enabled,
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = ["DATABASE_URL_ENV", "StockConfiguration", "get_active_config"]
