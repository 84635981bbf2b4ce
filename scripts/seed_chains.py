#!/usr/bin/env python3
"""
Seed course-tab approval chains from configuration.

Loads the active configuration, initializes the engine, creates the
tables and writes every configured chain through ChainDefinitionService.
Course tabs that already have definitions are skipped, so the script is
safe to re-run.

Usage:
    python3 scripts/seed_chains.py [--config PATH] [--db-url URL] [--reset]
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# Actor recorded as created_by_id on seeded definitions.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed course-tab approval chains from config")
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: approval_config/sets/default.yaml)",
    )
    p.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: from config, or APPROVAL_DATABASE_URL)",
    )
    p.add_argument(
        "--reset",
        action="store_true",
        help="Drop all approval tables before seeding",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from approval_config import get_active_config
    from approval_config.bridges import seed_chain_definitions
    from approval_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        reset_engine,
        session_scope,
    )
    from approval_kernel.exceptions import ApprovalKernelError
    from approval_kernel.logging_config import configure_logging
    from approval_kernel.services.chain_definition_service import ChainDefinitionService

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ApprovalKernelError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)

    db_url = args.db_url or config.database.url
    init_engine_from_url(
        db_url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    try:
        if args.reset:
            print("Dropping tables...")
            drop_tables()
        create_tables()

        try:
            with session_scope() as session:
                created = seed_chain_definitions(
                    config, ChainDefinitionService(session), SYSTEM_ACTOR_ID,
                )
        except ApprovalKernelError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    finally:
        reset_engine()

    print(f"Seeded {len(created)} step definition(s) from {config.config_id} v{config.version}")
    for definition in created:
        final = " (final)" if definition.is_final_approval else ""
        print(
            f"  tab {definition.course_tab_id}  "
            f"order {definition.order}  {definition.kind.label}{final}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
