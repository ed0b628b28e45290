"""SQLite-backed container store.

The store is the durable half of the supervisor's bookkeeping. A record
is written before a container or pod is spawned and deleted only after
the supervisor has attempted to remove it, so a store left behind by a
crashed run lists exactly the resources that may still exist.

Why This Matters:
    A test run killed mid-suite (CI timeout, ``kill -9``, laptop lid)
    leaves containers running and ports bound. The next run of the same
    project opens the same store file, finds those records, and removes
    the containers before starting new ones.

Key Concepts:
    ContainerStore: Thread-safe access to one project's store file.
    ContainerRecord / PodRecord / AuditEvent: Row types (``store.models``).
    MigrationRunner: Schema creation and version gating (``store.migrations``).

Architecture Decisions:
    - stdlib ``sqlite3``: one file per project, no server, safe for several
      processes through SQLite's own locking.
    - Autocommit connection with explicit ``BEGIN IMMEDIATE`` for every
      write: concurrent writers from several supervisors serialize on the
      database lock instead of interleaving.
    - ``PRAGMA foreign_keys = ON``: a container record naming a pod must
      reference an existing pod record; deleting the pod record deletes
      its members' records.
    - In-process ``threading.Lock``: one connection shared by the
      supervisor's caller threads is used by one thread at a time.

Tags:
    store, sqlite, crash-recovery, write-ahead, audit, pod-spine
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from podspine.core.errors import StoreError
from podspine.core.logging import get_logger
from podspine.store.migrations import MigrationRunner
from podspine.store.models import AuditEvent, ContainerRecord, PodRecord

logger = get_logger(__name__)

# Seconds a writer waits for another process's transaction to finish.
_BUSY_TIMEOUT = 30.0


class ContainerStore:
    """Durable record of live pods, containers and audit events.

    Use :meth:`open` rather than the constructor::

        with ContainerStore.open(Path("/tmp/podspine/myproject.db")) as store:
            store.pod_put("PODSPINE-POD-myproject-ABC")
            store.container_put(ContainerRecord("PODSPINE-myproject-DEF"))
    """

    def __init__(self, conn: sqlite3.Connection, path: str) -> None:
        self._conn = conn
        self._path = path
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def open(cls, path: Path | str, read_only: bool = False) -> ContainerStore:
        """Open (creating if needed) and migrate the store at ``path``.

        With ``read_only=True`` the file must already exist at the current
        schema version; it is neither created nor migrated, and every
        write raises :class:`StoreError`.

        Raises:
            StoreIncompatibleError: The file was written by a newer schema.
            StoreError: The file could not be opened or migrated, or a
                read-only store is missing or out of date.
        """
        path_text = str(path)
        if read_only:
            target = Path(path_text).resolve().as_uri() + "?mode=ro"
        else:
            target = path_text
            if path_text != ":memory:":
                Path(path_text).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                target,
                timeout=_BUSY_TIMEOUT,
                isolation_level=None,
                check_same_thread=False,
                uri=read_only,
            )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open store {path_text}", cause=exc) from exc

        try:
            conn.execute("PRAGMA foreign_keys = ON")
            runner = MigrationRunner(conn, path=path_text, read_only=read_only)
            if read_only:
                if not runner.is_current():
                    raise StoreError(
                        f"Store {path_text} needs migration",
                        context={"path": path_text, "supported": runner.latest_version},
                    )
                version, applied = runner.latest_version, []
            else:
                result = runner.apply_pending()
                version, applied = result.current_version, result.applied
        except sqlite3.Error as exc:
            conn.close()
            raise StoreError(f"Could not read store {path_text}", cause=exc) from exc
        except Exception:
            conn.close()
            raise

        logger.debug(
            "store.opened",
            path=path_text,
            schema_version=version,
            applied=applied,
            read_only=read_only,
        )
        return cls(conn, path_text)

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def schema_version(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT version_number FROM schema_version").fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._closed:
                raise StoreError(f"Store {self._path} is closed", context={"operation": operation})
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StoreError(
                    f"Store operation {operation} failed: {exc}",
                    context={"operation": operation, "path": self._path},
                    cause=exc,
                ) from exc

    @contextmanager
    def _read(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._closed:
                raise StoreError(f"Store {self._path} is closed", context={"operation": operation})
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(
                    f"Store operation {operation} failed: {exc}",
                    context={"operation": operation, "path": self._path},
                    cause=exc,
                ) from exc

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def container_put(self, record: ContainerRecord) -> None:
        """Insert a container record; its pod record must already exist."""
        with self._transaction("container_put") as conn:
            pod_id = None
            if record.pod_name is not None:
                row = conn.execute(
                    "SELECT p_id FROM pods WHERE p_name = ?", (record.pod_name,)
                ).fetchone()
                if row is None:
                    raise StoreError(
                        f"Container {record.name} references unknown pod {record.pod_name}",
                        context={"container": record.name, "pod": record.pod_name},
                    )
                pod_id = row[0]
            conn.execute(
                "INSERT INTO containers (c_name, c_pod) VALUES (?, ?)",
                (record.name, pod_id),
            )
        logger.debug("store.container_put", container=record.name, pod=record.pod_name)

    def container_delete(self, name: str) -> bool:
        """Delete a container record. Returns False if none existed."""
        with self._transaction("container_delete") as conn:
            cursor = conn.execute("DELETE FROM containers WHERE c_name = ?", (name,))
            deleted = cursor.rowcount > 0
        logger.debug("store.container_delete", container=name, deleted=deleted)
        return deleted

    def container_get(self, name: str) -> ContainerRecord | None:
        with self._read("container_get") as conn:
            row = conn.execute(
                """
                SELECT c.c_name, p.p_name
                FROM containers c LEFT JOIN pods p ON c.c_pod = p.p_id
                WHERE c.c_name = ?
                """,
                (name,),
            ).fetchone()
        return ContainerRecord(name=row[0], pod_name=row[1]) if row else None

    def container_list(self) -> list[ContainerRecord]:
        with self._read("container_list") as conn:
            rows = conn.execute(
                """
                SELECT c.c_name, p.p_name
                FROM containers c LEFT JOIN pods p ON c.c_pod = p.p_id
                ORDER BY c.c_id
                """
            ).fetchall()
        return [ContainerRecord(name=row[0], pod_name=row[1]) for row in rows]

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    def pod_put(self, name: str) -> None:
        with self._transaction("pod_put") as conn:
            conn.execute("INSERT INTO pods (p_name) VALUES (?)", (name,))
        logger.debug("store.pod_put", pod=name)

    def pod_delete(self, name: str) -> bool:
        """Delete a pod record and, by cascade, its members' records."""
        with self._transaction("pod_delete") as conn:
            cursor = conn.execute("DELETE FROM pods WHERE p_name = ?", (name,))
            deleted = cursor.rowcount > 0
        logger.debug("store.pod_delete", pod=name, deleted=deleted)
        return deleted

    def pod_list(self) -> list[PodRecord]:
        with self._read("pod_list") as conn:
            rows = conn.execute("SELECT p_name FROM pods ORDER BY p_id").fetchall()
        return [PodRecord(name=row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_append(self, event: AuditEvent) -> None:
        with self._transaction("audit_append") as conn:
            conn.execute(
                """
                INSERT INTO audit (a_instance, a_scope, a_time_ms, a_code, a_text)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event.instance_id, event.scope, event.timestamp_ms, event.code, event.text),
            )

    def audit_list(self, limit: int | None = None) -> list[AuditEvent]:
        """Return audit events oldest first (the newest ``limit`` if given)."""
        with self._read("audit_list") as conn:
            if limit is None:
                rows = conn.execute(
                    """
                    SELECT a_instance, a_scope, a_code, a_text, a_time_ms
                    FROM audit ORDER BY a_id
                    """
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM (
                        SELECT a_id, a_instance, a_scope, a_code, a_text, a_time_ms
                        FROM audit ORDER BY a_id DESC LIMIT ?
                    ) ORDER BY a_id
                    """,
                    (limit,),
                ).fetchall()
                rows = [row[1:] for row in rows]
        return [
            AuditEvent(
                instance_id=row[0],
                scope=row[1],
                code=row[2],
                text=row[3],
                timestamp_ms=row[4],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
        logger.debug("store.closed", path=self._path)

    def __enter__(self) -> ContainerStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
