"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``ApprovalConfig``.

Architecture position:
    Configuration -- YAML-driven settings.  This package sits above
    ``approval_kernel``; the kernel MUST NEVER import from
    ``approval_config``.  ``bridges`` translate configuration into
    kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - ``APPROVAL_DATABASE_URL`` in the environment overrides the
      configured database URL, and nothing else is read from the
      environment.

Failure modes:
    - ``FileNotFoundError`` -- configuration file does not exist.
    - ``ConfigurationError`` -- missing keys or malformed values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the config id, version,
    checksum and chain count.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from approval_config.loader import load_config
from approval_config.schema import ApprovalConfig
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

DATABASE_URL_ENV = "APPROVAL_DATABASE_URL"

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> ApprovalConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a configuration file.  Defaults to
            approval_config/sets/default.yaml.

    Returns:
        ApprovalConfig -- frozen.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is missing required values.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_config(config_path)

    url_override = os.environ.get(DATABASE_URL_ENV)
    if url_override:
        config = replace(config, database=replace(config.database, url=url_override))

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "database_url_overridden": bool(url_override),
            "chain_count": len(config.chains),
            "principal_count": len(config.principals),
        },
    )
    return config


__all__ = [
    "ApprovalConfig",
    "DATABASE_URL_ENV",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
