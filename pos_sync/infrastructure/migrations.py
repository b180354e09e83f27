from __future__ import annotations

import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pos_sync.domain.collections import ALL_COLLECTIONS
from pos_sync.domain.time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

Direction = Literal["up", "down"]


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    directory: Path

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"

    def path(self, direction: Direction) -> Path:
        return self.directory / f"{self.label}.{direction}.sql"

    def sql(self, direction: Direction) -> str:
        return self.path(direction).read_text(encoding="utf-8")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path("up").read_bytes()).hexdigest()


@dataclass(frozen=True)
class MigrationStatus:
    version: int
    name: str
    applied: bool
    drifted: bool = False


class MigrationRunner:
    """Brings a till database to the latest schema.

    Each ``NNN_name.up.sql`` runs in its own transaction together with its
    ``schema_migrations`` row, and ``PRAGMA user_version`` tracks the newest
    applied version. A script edited after it was applied is reported as
    drifted, never re-run.
    """

    def __init__(self, connection: sqlite3.Connection, migrations_dir: Path | None = None) -> None:
        self.connection = connection
        self.connection.row_factory = sqlite3.Row
        self.migrations = discover_migrations(migrations_dir or MIGRATIONS_DIR)

    def apply_all(self) -> list[int]:
        applied = self._applied_checksums()
        newly_applied: list[int] = []
        for migration in self.migrations:
            if migration.version in applied:
                if applied[migration.version] != migration.checksum:
                    logger.warning("Migration %s changed after being applied", migration.label)
                continue
            self._run(migration, "up")
            newly_applied.append(migration.version)
        return newly_applied

    def rollback(self, steps: int = 1) -> list[int]:
        if steps < 1:
            raise ValueError("steps must be at least 1")
        self._applied_checksums()
        rows = self.connection.execute(
            "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT ?", (steps,)
        ).fetchall()
        by_version = {migration.version: migration for migration in self.migrations}
        rolled_back: list[int] = []
        for row in rows:
            self._run(by_version[row["version"]], "down")
            rolled_back.append(row["version"])
        return rolled_back

    def status(self) -> list[MigrationStatus]:
        applied = self._applied_checksums()
        return [
            MigrationStatus(
                version=migration.version,
                name=migration.name,
                applied=migration.version in applied,
                drifted=migration.version in applied and applied[migration.version] != migration.checksum,
            )
            for migration in self.migrations
        ]

    def missing_tables(self) -> list[str]:
        """Store tables the sync engine needs that the current schema lacks."""
        rows = self.connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        present = {row["name"] for row in rows}
        return sorted(ALL_COLLECTIONS - present)

    def _applied_checksums(self) -> dict[int, str]:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )
        self.connection.commit()
        rows = self.connection.execute("SELECT version, checksum FROM schema_migrations").fetchall()
        return {row["version"]: row["checksum"] for row in rows}

    def _run(self, migration: Migration, direction: Direction) -> None:
        script = migration.sql(direction)
        with self.connection:
            if script.strip():
                self.connection.executescript(script)
            if direction == "up":
                self.connection.execute(
                    "INSERT INTO schema_migrations (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
                    (migration.version, migration.name, migration.checksum, to_iso(utc_now())),
                )
            else:
                self.connection.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
            current = self.connection.execute(
                "SELECT COALESCE(MAX(version), 0) AS version FROM schema_migrations"
            ).fetchone()["version"]
            self.connection.execute(f"PRAGMA user_version = {int(current)}")
        logger.info("Migration %s %s", migration.label, "applied" if direction == "up" else "rolled back")


def discover_migrations(directory: Path) -> list[Migration]:
    migrations: list[Migration] = []
    for up_file in sorted(directory.glob("*.up.sql")):
        version_text, name = up_file.name[: -len(".up.sql")].split("_", maxsplit=1)
        migration = Migration(version=int(version_text), name=name, directory=directory)
        if not migration.path("down").exists():
            raise FileNotFoundError(f"Missing down migration for {up_file.name}")
        migrations.append(migration)
    return migrations


def run_migrations(connection: sqlite3.Connection) -> list[int]:
    return MigrationRunner(connection).apply_all()
