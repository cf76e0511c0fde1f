"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into typed
``approval_config.schema`` dataclass instances.  Runtime callers use
``approval_config.get_active_config()`` instead of calling this module.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Imports only the kernel's
pure domain enums; never models or services.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* Seed template level orders are exactly ``1..n`` and entity types are
  known, so a bad file fails at load time rather than half-way through
  seeding.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed source.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown entity type, bad level ordering, duplicate template or
  username  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfiguration,
    ApprovalSettings,
    ChainLevelDef,
    ChainTemplateDef,
    UserDef,
)
from approval_kernel.domain.approval import EntityType


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_settings(data: dict[str, Any]) -> ApprovalSettings:
    """Parse ApprovalSettings; ``database_url`` is required."""
    return ApprovalSettings(
        database_url=data["database_url"],
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        log_level=str(data.get("log_level", "INFO")).upper(),
    )


def parse_user(data: dict[str, Any]) -> UserDef:
    return UserDef(
        username=data["username"],
        display_name=data["display_name"],
        email=data.get("email"),
    )


def parse_level(data: dict[str, Any]) -> ChainLevelDef:
    level_order = int(data["level_order"])
    if level_order <= 0:
        raise ValueError(f"level_order must be positive, got {level_order}")
    return ChainLevelDef(
        level_order=level_order,
        level_name=data["level_name"],
        approver_username=data["approver"],
        is_required=bool(data.get("is_required", True)),
    )


def parse_template(data: dict[str, Any]) -> ChainTemplateDef:
    """
    Parse a ``ChainTemplateDef`` from a dict.

    Raises:
        KeyError: if ``entity_type`` or ``name`` is missing.
        ValueError: unknown entity type or non-sequential level orders.
    """
    raw_type = data["entity_type"]
    try:
        entity_type = EntityType(raw_type)
    except ValueError:
        valid = ", ".join(e.value for e in EntityType)
        raise ValueError(
            f"Unknown entity_type {raw_type!r}; expected one of: {valid}"
        ) from None

    levels = tuple(
        sorted(
            (parse_level(level) for level in data.get("levels", [])),
            key=lambda level: level.level_order,
        )
    )
    orders = [level.level_order for level in levels]
    if orders != list(range(1, len(orders) + 1)):
        raise ValueError(
            f"Template {entity_type.value}: level orders must be sequential "
            f"starting from 1, got {orders}"
        )

    return ChainTemplateDef(
        entity_type=entity_type.value,
        name=data["name"],
        description=data.get("description"),
        levels=levels,
    )


def parse_configuration(data: dict[str, Any]) -> ApprovalConfiguration:
    """
    Parse the whole configuration document.

    Postconditions:
        - ``checksum`` is ``compute_checksum(data)``.
    """
    users = tuple(parse_user(u) for u in data.get("users", []))
    _reject_duplicates([u.username for u in users], "username")

    templates = tuple(parse_template(t) for t in data.get("templates", []))
    _reject_duplicates([t.entity_type for t in templates], "template entity_type")

    return ApprovalConfiguration(
        settings=parse_settings(data["settings"]),
        users=users,
        templates=templates,
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> ApprovalConfiguration:
    return parse_configuration(load_yaml_file(path))


def _reject_duplicates(values: list[str], label: str) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            raise ValueError(f"Duplicate {label} in configuration: {value!r}")
        seen.add(value)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Returns a hex-encoded SHA-256 hash string.
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
