"""
Create the webhook_events and webhook_queue tables.

This migration:
1. Creates webhook_events and webhook_queue (with their indexes) if missing
2. Adds the claimed_at column to webhook_queue on databases created before
   the stuck-entry sweep existed

Usage:
    python migrations/create_webhook_tables.py [--database-url URL]

The script is idempotent and safe to run multiple times.
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError, ProgrammingError

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_SQLITE_PATH = os.path.join(ROOT_DIR, "instance", "webhooks.sqlite")

sys.path.insert(0, ROOT_DIR)

# Load environment variables from a .env file if present
load_dotenv()


def normalize_sqlite_path(path: str) -> str:
    """Return a SQLAlchemy-friendly SQLite URL for the given path."""
    if not os.path.isabs(path):
        path = os.path.join(ROOT_DIR, path)
    return f"sqlite:///{path}"


def infer_database_url(cli_url: str = None) -> str:
    """Figure out which database to hit, honoring CLI and environment defaults."""
    candidates = [
        cli_url,
        os.environ.get("DATABASE_URL"),
        os.environ.get("SQLALCHEMY_DATABASE_URI"),
        os.environ.get("LOCAL_DATABASE_URL"),
    ]

    for value in candidates:
        if not value:
            continue

        value = value.strip()
        if value.startswith("postgres://"):
            # SQLAlchemy expects postgresql://
            return value.replace("postgres://", "postgresql://", 1)

        if value.startswith(("postgresql://", "mysql://", "mariadb://", "sqlite://")):
            return value

        # Treat anything else as a filesystem path to a SQLite DB
        return normalize_sqlite_path(value)

    return normalize_sqlite_path(DEFAULT_SQLITE_PATH)


def column_exists(engine, table_name: str, column_name: str) -> bool:
    """Check if a given column exists on the specified table."""
    inspector = inspect(engine)
    columns = inspector.get_columns(table_name)
    return any(col["name"] == column_name for col in columns)


def table_exists(engine, table_name: str) -> bool:
    inspector = inspect(engine)
    return table_name in inspector.get_table_names()


def migrate(database_url: str = None) -> bool:
    """Perform the migration."""
    from webhook_processor.models import WebhookEvent, WebhookQueueEntry, db

    db_url = infer_database_url(database_url)
    print(f"Connecting to database: {db_url}")

    if db_url.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(db_url[len("sqlite:///"):]) or ".", exist_ok=True)

    engine = create_engine(db_url)

    try:
        tables = [WebhookEvent.__table__, WebhookQueueEntry.__table__]
        missing = [table.name for table in tables if not table_exists(engine, table.name)]

        if missing:
            print(f"Creating tables: {', '.join(missing)}...")
            db.metadata.create_all(engine, tables=tables, checkfirst=True)
            print("✓ Tables created.")
        elif column_exists(engine, "webhook_queue", "claimed_at"):
            print("✓ Tables 'webhook_events' and 'webhook_queue' already exist. Nothing to do.")
            return True

        if not column_exists(engine, "webhook_queue", "claimed_at"):
            print("Adding column 'claimed_at' to 'webhook_queue' table...")
            column_type = "TIMESTAMP" if "postgres" in db_url.lower() else "DATETIME"
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE webhook_queue ADD COLUMN claimed_at {column_type}"))
            print("✓ Successfully added 'claimed_at' column.")

        for table in ("webhook_events", "webhook_queue"):
            if not table_exists(engine, table):
                print(f"✗ Verification failed: table '{table}' not found")
                return False
            print(f"✓ Verification: table '{table}' exists")

        print("\n✓ Migration completed successfully!")
        return True

    except (OperationalError, ProgrammingError) as exc:
        print(f"✗ Database error: {exc}")
        return False
    finally:
        engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Create the webhook_events and webhook_queue tables."
    )
    parser.add_argument(
        "--database-url",
        help="Override database URL (otherwise inferred from env or defaults).",
    )
    args = parser.parse_args()

    success = migrate(args.database_url)
    sys.exit(0 if success else 1)
