#!/usr/bin/env python3
"""
Initialise an approval database and seed users and chain templates.

Creates the tables if they do not exist, then applies the configuration:
missing users are created (by username), missing chain templates are
created, and every configured template gets its configured levels.

Usage:
    python scripts/seed_chain_templates.py
    python scripts/seed_chain_templates.py --config path/to/config.yaml
    python scripts/seed_chain_templates.py --database-url postgresql://...
    python scripts/seed_chain_templates.py --drop
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_config
from approval_config.bridges import seed_chain_templates, seed_users
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.exceptions import ApprovalKernelError
from approval_kernel.logging_config import configure_logging
from approval_kernel.services.approval_command_service import ApprovalCommandService


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed approval users and chain templates")
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: approval_config/sets/default.yaml)",
    )
    p.add_argument(
        "--database-url",
        default=None,
        help="Override the configured database URL",
    )
    p.add_argument(
        "--drop",
        action="store_true",
        help="Drop all tables before seeding (destroys existing data)",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    config = get_active_config(args.config)
    configure_logging(level=getattr(logging, config.settings.log_level, logging.INFO))

    database_url = args.database_url or config.settings.database_url
    print(f"Database: {database_url}")
    print(f"Config checksum: {config.checksum[:16]}...")

    init_engine_from_url(
        database_url,
        echo=config.settings.echo,
        pool_size=config.settings.pool_size,
        max_overflow=config.settings.max_overflow,
    )
    if args.drop:
        print("Dropping tables...")
        drop_tables()
    create_tables()
    register_immutability_listeners()

    try:
        with session_scope() as session:
            created = seed_users(session, config)
            templates = seed_chain_templates(config, ApprovalCommandService(session))
    except ApprovalKernelError as exc:
        print(f"Seeding failed [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    print(f"Users created: {len(created)}")
    for entity_type, template_id in sorted(templates.items(), key=lambda kv: kv[0].value):
        print(f"  {entity_type.value:<16} {template_id}")
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
