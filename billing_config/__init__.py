"""
billing_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way services obtain configuration.
    It loads the YAML configuration set (``sets/default.yaml`` unless another
    file is given), validates it, and returns a frozen ``BillingConfig``.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ConfigurationError`` -- a value failed validation.

Audit relevance:
    Every successful call logs ``config_loaded`` with the file path and the
    SHA-256 checksum of the raw configuration, tying each issued document
    number back to the configuration that chose its layout.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_config, parse_config
from billing_config.schema import (
    BillingConfig,
    DerivationConfig,
    DocumentTypeDefaults,
    NumberingConfig,
)

_logger = logging.getLogger("billing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> BillingConfig:
    """The ONLY public configuration entrypoint."""
    config_path = path or DEFAULT_CONFIG_PATH
    config = load_config(config_path)
    _logger.info(
        "config_loaded",
        extra={
            "config_path": str(config_path),
            "checksum": config.checksum,
            "allocation_max_attempts": config.allocation_max_attempts,
            "unsupported_rate_policy": config.unsupported_rate_policy.value,
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "DEFAULT_CONFIG_PATH",
    "DerivationConfig",
    "DocumentTypeDefaults",
    "NumberingConfig",
    "get_active_config",
    "parse_config",
]
