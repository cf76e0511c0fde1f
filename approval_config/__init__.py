"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``: database and logging settings, plus the
    users and chain templates used to seed a fresh installation.

Architecture position:
    Configuration -- sits above ``approval_kernel``.  The kernel MUST
    NEVER import from ``approval_config``; ``bridges`` translates parsed
    definitions into kernel commands.

Invariants enforced:
    - Single entrypoint: runtime config flows through ``get_active_config()``.
    - The ``APPROVAL_DATABASE_URL`` environment variable, when set,
      overrides ``settings.database_url``.  Nothing else reads the
      environment.
    - Deterministic: the same file always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` / ``KeyError`` -- schema or structural validation
      failures.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from approval_config.loader import load_configuration
from approval_config.schema import (
    ApprovalConfiguration,
    ApprovalSettings,
    ChainLevelDef,
    ChainTemplateDef,
    UserDef,
)

_logger = logging.getLogger("approval_kernel.config")

DATABASE_URL_ENV = "APPROVAL_DATABASE_URL"

# Default configuration file
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> ApprovalConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration file.
            Defaults to approval_config/sets/default.yaml.

    Returns:
        ApprovalConfiguration with the environment override applied.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        config = replace(config, settings=replace(config.settings, database_url=env_url))

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "database_url_from_env": bool(env_url),
            "user_count": len(config.users),
            "template_count": len(config.templates),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ApprovalConfiguration",
    "ApprovalSettings",
    "ChainLevelDef",
    "ChainTemplateDef",
    "UserDef",
    "DATABASE_URL_ENV",
]
