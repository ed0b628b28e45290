"""SQL migration runner for the container store.

Reads numbered ``.sql`` files (``001_initial.sql``, ``002_...sql``) from
the schema directory and applies the ones newer than the version held in
the single-row ``schema_version`` table. Each migration runs in its own
``BEGIN IMMEDIATE`` transaction and re-reads the version inside it, so
two processes opening the same new store do not apply a migration twice.

A store whose version is newer than the newest migration shipped here
was written by a newer pod-spine and is rejected with
:class:`~podspine.core.errors.StoreIncompatibleError`.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from podspine.core.errors import StoreError, StoreIncompatibleError
from podspine.core.logging import get_logger

logger = get_logger(__name__)

_SCHEMA_DIR = Path(__file__).resolve().parent / "schema"
_MIGRATION_NAME = re.compile(r"^(\d+)_[\w.-]+\.sql$")


@dataclass(frozen=True)
class Migration:
    """A single numbered migration file."""

    version: int
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass
class MigrationResult:
    """Result of a migration run."""

    previous_version: int = 0
    current_version: int = 0
    applied: list[str] = field(default_factory=list)


def split_statements(sql: str) -> list[str]:
    """Split a script into complete statements, dropping ``--`` comment lines."""
    statements: list[str] = []
    buffer = ""
    for line in sql.splitlines():
        if line.strip().startswith("--"):
            continue
        buffer += line + "\n"
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            if statement and statement != ";":
                statements.append(statement)
            buffer = ""
    if buffer.strip():
        raise StoreError(f"Incomplete SQL statement in migration: {buffer.strip()!r}")
    return statements


class MigrationRunner:
    """Applies pending migrations to a SQLite connection.

    The connection must be in autocommit mode (``isolation_level=None``);
    the runner manages transactions itself.

    Example::

        conn = sqlite3.connect("store.db", isolation_level=None)
        runner = MigrationRunner(conn, path="store.db")
        result = runner.apply_pending()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        path: str = ":memory:",
        schema_dir: Path | str | None = None,
        read_only: bool = False,
    ) -> None:
        self._conn = conn
        self._path = path
        self._schema_dir = Path(schema_dir) if schema_dir else _SCHEMA_DIR
        self._read_only = read_only
        if not read_only:
            self._ensure_version_table()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def discover(self) -> list[Migration]:
        """Return the available migrations in version order."""
        if not self._schema_dir.exists():
            return []
        migrations = []
        for path in self._schema_dir.glob("*.sql"):
            match = _MIGRATION_NAME.match(path.name)
            if match:
                migrations.append(Migration(version=int(match.group(1)), path=path))
        return sorted(migrations, key=lambda m: m.version)

    @property
    def latest_version(self) -> int:
        migrations = self.discover()
        return migrations[-1].version if migrations else 0

    def current_version(self) -> int:
        row = self._conn.execute("SELECT version_number FROM schema_version").fetchone()
        return int(row[0]) if row else 0

    def is_current(self) -> bool:
        """True when no migration is pending."""
        return self.check_compatible() == self.latest_version

    def check_compatible(self) -> int:
        """Raise if the store is newer than the shipped migrations."""
        current = self.current_version()
        latest = self.latest_version
        if current > latest:
            raise StoreIncompatibleError(self._path, current, latest)
        return current

    def apply_pending(self) -> MigrationResult:
        """Apply every migration newer than the store's version."""
        if self._read_only:
            raise StoreError(f"Cannot migrate read-only store {self._path}")
        previous = self.check_compatible()
        result = MigrationResult(previous_version=previous, current_version=previous)

        for migration in self.discover():
            if migration.version <= result.current_version:
                continue
            if self._apply(migration):
                result.applied.append(migration.filename)
            result.current_version = migration.version

        result.current_version = self.check_compatible()
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_version_table(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version_lock   CHAR(1) NOT NULL DEFAULT 'X' PRIMARY KEY
                               CHECK (version_lock = 'X'),
                version_number INTEGER NOT NULL
            )
            """
        )

    def _apply(self, migration: Migration) -> bool:
        statements = split_statements(migration.path.read_text(encoding="utf-8"))
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            # Another process may have applied it while we waited for the lock.
            if self.current_version() >= migration.version:
                self._conn.execute("ROLLBACK")
                return False
            for statement in statements:
                self._conn.execute(statement)
            self._conn.execute(
                "INSERT OR REPLACE INTO schema_version (version_lock, version_number) "
                "VALUES ('X', ?)",
                (migration.version,),
            )
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            logger.error("migration.failed", migration=migration.filename, error=str(exc))
            raise StoreError(
                f"Migration {migration.filename} failed on {self._path}",
                cause=exc,
            ) from exc

        logger.info("migration.applied", migration=migration.filename, path=self._path)
        return True
