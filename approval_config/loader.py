"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``approval_config.schema`` dataclasses.  The single public entry point
for runtime config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* No silent defaults for required fields: a missing ``config_id``,
  ``version``, chain ``course_tab_id`` or step ``order`` raises
  ``ConfigurationError`` naming the file.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys or malformed values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_config.schema import (
    ApprovalConfig,
    CourseTabChainDef,
    DatabaseSettings,
    LoggingSettings,
    PrincipalDef,
    StepDefinitionDef,
)
from approval_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse DatabaseSettings; every key is optional."""
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    """Parse LoggingSettings."""
    return LoggingSettings(level=str(data.get("level", "INFO")).upper())


def parse_step(data: dict[str, Any]) -> StepDefinitionDef:
    """
    Parse a ``StepDefinitionDef`` from a dict.

    Raises:
        KeyError: if ``order`` is missing.
    """
    return StepDefinitionDef(
        order=int(data["order"]),
        role=data.get("role"),
        head_approval=bool(data.get("head_approval", False)),
        final_approval=bool(data.get("final_approval", False)),
    )


def parse_chain(data: dict[str, Any]) -> CourseTabChainDef:
    """
    Parse a ``CourseTabChainDef`` from a dict.

    Raises:
        KeyError: if ``course_tab_id`` is missing.
        ValueError: if ``course_tab_id`` is not a UUID.
    """
    return CourseTabChainDef(
        course_tab_id=UUID(str(data["course_tab_id"])),
        name=data.get("name", ""),
        steps=tuple(parse_step(s) for s in data.get("steps", [])),
    )


def parse_principal(data: dict[str, Any]) -> PrincipalDef:
    """Parse a PrincipalDef from a dict."""
    return PrincipalDef(
        principal_id=UUID(str(data["principal_id"])),
        roles=tuple(data.get("roles", ())),
        head_approver=bool(data.get("head_approver", False)),
        name=data.get("name", ""),
    )


def parse_config(data: dict[str, Any], source: str = "<memory>") -> ApprovalConfig:
    """
    Parse a whole configuration document.

    Raises:
        ConfigurationError: on missing keys or malformed values.
    """
    try:
        return ApprovalConfig(
            config_id=data["config_id"],
            version=int(data["version"]),
            database=parse_database(data.get("database") or {}),
            logging=parse_logging(data.get("logging") or {}),
            chains=tuple(parse_chain(c) for c in data.get("chains") or []),
            principals=tuple(parse_principal(p) for p in data.get("principals") or []),
            checksum=compute_checksum(data),
        )
    except KeyError as exc:
        raise ConfigurationError(source, f"missing required key {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(source, str(exc)) from exc


def load_config(path: Path) -> ApprovalConfig:
    """Load and parse the configuration file at ``path``."""
    return parse_config(load_yaml_file(path), source=str(path))
