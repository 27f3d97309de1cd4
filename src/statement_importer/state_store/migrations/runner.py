"""
Versioned schema changes for the state store.

Each migration is a module ``NNN_name.py`` in this package exposing
``VERSION``, ``NAME``, ``upgrade(conn)`` and optionally ``downgrade(conn)``.
The number in the file name must equal ``VERSION``.

Applied versions are recorded in ``schema_migrations``. A migration and its
record commit together, so a failed upgrade leaves no trace.
"""

import importlib
import logging
import pkgutil
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MODULE_PATTERN = re.compile(r"^(\d{3})_\w+$")


class MigrationError(Exception):
    """A migration could not be loaded, applied or rolled back."""

    pass


@dataclass
class Migration:
    """One schema change."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def _load(module_name: str) -> Migration:
    try:
        module = importlib.import_module(f"{__package__}.{module_name}")
        migration = Migration(
            version=module.VERSION,
            name=module.NAME,
            upgrade=module.upgrade,
            downgrade=getattr(module, "downgrade", None),
        )
    except (ImportError, AttributeError) as e:
        raise MigrationError(f"Failed to load migration {module_name}: {e}") from e

    file_version = int(MODULE_PATTERN.match(module_name).group(1))
    if migration.version != file_version:
        raise MigrationError(
            f"Migration {module_name} declares VERSION {migration.version}"
        )
    return migration


def get_all_migrations() -> list[Migration]:
    """All migrations in this package, by ascending version."""
    from . import __path__ as package_path

    migrations = [
        _load(info.name)
        for info in pkgutil.iter_modules(package_path)
        if MODULE_PATTERN.match(info.name)
    ]
    migrations.sort(key=lambda m: m.version)

    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise MigrationError(f"Duplicate migration versions: {versions}")
    return migrations


class MigrationRunner:
    """Applies and rolls back migrations on one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """
            )

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM schema_migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Highest applied version, 0 on a fresh database."""
        applied = self.get_applied_versions()
        return max(applied) if applied else 0

    def pending(self) -> list[Migration]:
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply_migration(self, migration: Migration) -> None:
        logger.info("Applying migration %03d_%s", migration.version, migration.name)
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            with self.conn:
                migration.upgrade(self.conn)
                self.conn.execute(
                    "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (migration.version, migration.name, applied_at),
                )
        except sqlite3.Error as e:
            logger.error("Migration %03d failed: %s", migration.version, e)
            raise MigrationError(f"Migration {migration.version} failed: {e}") from e

    def rollback_migration(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise MigrationError(f"Migration {migration.version} has no downgrade")

        logger.info("Rolling back migration %03d_%s", migration.version, migration.name)
        try:
            with self.conn:
                migration.downgrade(self.conn)
                self.conn.execute(
                    "DELETE FROM schema_migrations WHERE version = ?", (migration.version,)
                )
        except sqlite3.Error as e:
            logger.error("Rollback of migration %03d failed: %s", migration.version, e)
            raise MigrationError(f"Rollback of migration {migration.version} failed: {e}") from e

    def run_pending(self) -> list[int]:
        """Apply every pending migration; returns the applied versions."""
        applied = []
        for migration in self.pending():
            self.apply_migration(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Schema migrated to version %d (%s)", applied[-1], applied)
        return applied
