"""
Migration runner for versioned database schema changes.

Migrations are named with format: {version}_{name}.py
E.g., 001_codification_catalog.py, 002_codified_extractions.py

Each migration must define:
- VERSION: int (must equal the filename prefix)
- NAME: str
- upgrade(conn: Connection) -> None
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "deal_intel.state_store.migrations"


@dataclass
class Migration:
    """Represents a database migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """
    Load all migrations from the migrations directory.

    A migration module that fails to import, or whose VERSION disagrees
    with its filename, raises: a silently skipped migration would leave
    the schema behind the code.

    Returns migrations sorted by version.
    """
    migrations = []
    migrations_dir = Path(__file__).parent

    for py_file in sorted(migrations_dir.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{py_file.stem}")
        file_version = int(py_file.stem[:3])
        if module.VERSION != file_version:
            raise RuntimeError(
                f"Migration {py_file.name} declares VERSION={module.VERSION}, expected {file_version}"
            )
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
            )
        )

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Runs database migrations in order.

    Tracks applied migrations in a `migrations` table.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._ensure_migrations_table()

    def _ensure_migrations_table(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        cursor = self.conn.execute("SELECT version FROM migrations ORDER BY version")
        return {row[0] for row in cursor.fetchall()}

    def get_pending(self) -> list[Migration]:
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply_migration(self, migration: Migration) -> None:
        """Apply a single migration and record it."""
        logger.info(f"Applying migration {migration.version:03d}: {migration.name}")

        try:
            migration.upgrade(self.conn)
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, now),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version:03d} failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """
        Run all pending migrations.

        Returns list of applied migration versions.
        """
        applied_versions = []
        for migration in self.get_pending():
            self.apply_migration(migration)
            applied_versions.append(migration.version)

        if applied_versions:
            logger.info(f"Applied {len(applied_versions)} migrations: {applied_versions}")
        else:
            logger.debug("No pending migrations")

        return applied_versions
