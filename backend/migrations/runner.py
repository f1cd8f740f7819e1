"""
Firestore Migration Runner

A simple migration system for Firestore that tracks executed migrations
in a _migrations collection.

Usage:
    python -m migrations.runner migrate      # Run pending migrations
    python -m migrations.runner status       # Show migration status
    python -m migrations.runner create NAME  # Create new migration file
"""

import argparse
import importlib.util
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import firebase_admin
from firebase_admin import firestore

from app.core.logging import get_logger, setup_logging

logger = get_logger("expenseflow.migrations")

MIGRATIONS_COLLECTION = "_migrations"
MIGRATIONS_DIR = Path(__file__).parent

_db: Optional[Any] = None


def get_db() -> Any:
    """Firestore client, created on first use so importing never connects."""
    global _db
    if _db is None:
        if not firebase_admin._apps:
            firebase_admin.initialize_app()
        _db = firestore.client()
    return _db


def get_executed_migrations(db: Any) -> set[str]:
    """Get set of already executed migration IDs."""
    return {doc.id for doc in db.collection(MIGRATIONS_COLLECTION).stream()}


def mark_migration_executed(db: Any, migration_id: str, summary: Optional[dict] = None) -> None:
    db.collection(MIGRATIONS_COLLECTION).document(migration_id).set({
        "executed_at": datetime.now(timezone.utc).isoformat(),
        "status": "completed",
        "summary": summary or {},
    })


def get_pending_migrations(db: Any, migrations_dir: Path = MIGRATIONS_DIR) -> list[tuple[str, Path]]:
    """Get list of pending migrations (not yet executed), oldest first."""
    executed = get_executed_migrations(db)
    return [
        (file.stem, file)
        for file in sorted(migrations_dir.glob("m_*.py"))
        if file.stem not in executed
    ]


def run_migration(db: Any, migration_id: str, file_path: Path) -> bool:
    """Run a single migration. Returns False when it is missing ``upgrade`` or fails."""
    logger.info(f"Running migration: {migration_id}")

    spec = importlib.util.spec_from_file_location(migration_id, file_path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    if not hasattr(module, "upgrade"):
        logger.error(f"Migration {migration_id} has no 'upgrade' function")
        return False

    try:
        summary = module.upgrade(db)
    except Exception as e:
        logger.error(f"Migration {migration_id} failed: {type(e).__name__}")
        return False

    mark_migration_executed(db, migration_id, summary if isinstance(summary, dict) else None)
    logger.info(f"Completed migration: {migration_id}")
    return True


def cmd_migrate(db: Any) -> int:
    """Run all pending migrations, stopping at the first failure."""
    pending = get_pending_migrations(db)
    if not pending:
        logger.info("No pending migrations")
        return 0

    logger.info(f"Found {len(pending)} pending migration(s)")
    success_count = 0
    for migration_id, file_path in pending:
        if not run_migration(db, migration_id, file_path):
            logger.error("Stopping due to error")
            break
        success_count += 1

    logger.info(f"Completed {success_count}/{len(pending)} migrations")
    return success_count


def cmd_status(db: Any) -> None:
    executed = get_executed_migrations(db)
    all_migrations = sorted(MIGRATIONS_DIR.glob("m_*.py"))
    if not all_migrations:
        print("No migrations found.")
        return

    print("Migration Status:\n")
    for file in all_migrations:
        status = "executed" if file.stem in executed else "pending "
        print(f"  {status}  {file.stem}")


def cmd_create(name: str) -> Path:
    """Create a new migration file."""
    timestamp = datetime.now().strftime("%Y%m%d")
    seq = len(list(MIGRATIONS_DIR.glob(f"m_{timestamp}_*.py"))) + 1
    safe_name = name.lower().replace(" ", "_").replace("-", "_")
    migration_id = f"m_{timestamp}_{seq:03d}_{safe_name}"
    file_path = MIGRATIONS_DIR / f"{migration_id}.py"

    template = f'''"""
Migration: {name}
Created: {datetime.now().isoformat()}
"""

from google.cloud.firestore_v1 import Client


def upgrade(db: Client) -> dict:
    """Run the migration and return a summary stored with the run record."""
    return {{}}
'''

    file_path.write_text(template)
    print(f"Created migration: {file_path}")
    return file_path


def main() -> None:
    parser = argparse.ArgumentParser(description="Firestore Migration Runner")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("migrate", help="Run pending migrations")
    subparsers.add_parser("status", help="Show migration status")
    create_parser = subparsers.add_parser("create", help="Create new migration")
    create_parser.add_argument("name", help="Migration name (e.g., 'reencrypt_fields')")

    args = parser.parse_args()
    setup_logging()

    if args.command == "migrate":
        cmd_migrate(get_db())
    elif args.command == "status":
        cmd_status(get_db())
    elif args.command == "create":
        cmd_create(args.name)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
