from __future__ import annotations

import argparse

from manus_relay.config.settings import get_settings
from manus_relay.logging_setup import configure_logging
from manus_relay.storage.postgres import DatabaseHandle, PostgresRelayStorage


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or upgrade the accounts and tasks tables in PostgreSQL."
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="PostgreSQL connection URL (default: MANUS_RELAY_DATABASE_URL or DATABASE_URL).",
    )
    return parser.parse_args()


def migrate(database_url: str) -> None:
    handle = DatabaseHandle(database_url)
    try:
        PostgresRelayStorage(handle).migrate()
    finally:
        handle.close()


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)
    database_url = args.database_url or settings.resolved_database_url()
    migrate(database_url)
    print("Schema is up to date.")


if __name__ == "__main__":
    main()
