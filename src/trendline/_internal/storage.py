"""DuckDB-based event store for trendline.

This module provides the StorageEngine class for persistent, ephemeral and
in-memory storage of events and user profiles (people) using DuckDB as the
embedded columnar database. Every row carries a project_id; every query the
compiler emits filters on it.
"""

from __future__ import annotations

import atexit
import json
import logging
import re
import tempfile
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import duckdb

from trendline.exceptions import (
    DatabaseLockedError,
    DatabaseNotFoundError,
    QueryError,
    QueryTimeoutError,
)
from trendline.types import ProjectSummary, SQLResult

_logger = logging.getLogger(__name__)

EVENTS_TABLE = "events"
PEOPLE_TABLE = "people"


class EventStore(Protocol):
    """What the insight service needs from a store: parameterized execution."""

    def execute_rows_params(
        self,
        sql: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> SQLResult: ...


class StorageEngine:
    """DuckDB-based storage for events and people.

    Provides persistent and ephemeral database management, batched
    ingestion, and parameterized query execution with an optional
    per-query timeout.

    Examples:
        Persistent storage:

        ```python
        storage = StorageEngine(path=Path("~/analytics.duckdb").expanduser())
        storage.ensure_schema()
        storage.insert_events("proj-1", records)
        storage.close()
        ```

        In-memory storage for tests:

        ```python
        with StorageEngine.memory() as storage:
            storage.ensure_schema()
            result = storage.execute_rows_params(
                "SELECT count(*) FROM events WHERE project_id = $p", {"p": "proj-1"}
            )
        ```
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        read_only: bool = False,
        _ephemeral: bool = False,
        _in_memory: bool = False,
    ) -> None:
        """Initialize storage engine with database at specified path.

        Args:
            path: Path to database file. Required unless _in_memory=True.
            read_only: Open database in read-only mode. Read-only connections
                can be opened concurrently by several processes.
            _ephemeral: Internal flag to mark database as ephemeral.
                DO NOT USE DIRECTLY - use StorageEngine.ephemeral() instead.
            _in_memory: Internal flag for in-memory databases.
                DO NOT USE DIRECTLY - use StorageEngine.memory() instead.

        Raises:
            OSError: If path is invalid or lacks write permissions.
            ValueError: If _ephemeral or _in_memory is used incorrectly.
            DatabaseLockedError: If database is locked and read_only=False.
            DatabaseNotFoundError: If read_only=True and database file doesn't exist.
        """
        self._path: Path | None = None
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._is_ephemeral = _ephemeral
        self._is_in_memory = _in_memory
        self._read_only = read_only
        self._closed = False

        if _ephemeral and _in_memory:
            raise ValueError("Cannot use both _ephemeral and _in_memory flags")

        if _in_memory:
            self._conn = duckdb.connect(":memory:")
            return

        # Ephemeral files are deleted on close, so only temp paths qualify.
        if _ephemeral and path is not None:
            temp_dir = Path(tempfile.gettempdir())
            try:
                path.resolve().relative_to(temp_dir.resolve())
            except ValueError:
                raise ValueError(
                    "The _ephemeral parameter is for internal use only. "
                    "Use StorageEngine.ephemeral() to create ephemeral databases."
                ) from None

        if path is None:
            raise ValueError(
                "Use StorageEngine.ephemeral() or StorageEngine.memory() "
                "for temporary databases"
            )

        # DuckDB cannot create a new file in read-only mode
        if read_only and not path.exists():
            raise DatabaseNotFoundError(str(path))

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._path = path
            self._conn = duckdb.connect(database=str(path), read_only=read_only)
            if self._is_ephemeral:
                atexit.register(self._cleanup_ephemeral)
        except duckdb.IOException as e:
            error_str = str(e)
            if "Could not set lock" in error_str:
                # Example: "Conflicting lock is held in ... (PID 12345)"
                pid_match = re.search(r"PID (\d+)", error_str)
                holding_pid = int(pid_match.group(1)) if pid_match else None
                raise DatabaseLockedError(str(path), holding_pid) from e
            raise OSError(f"Failed to create database at {path}: {e}") from e
        except OSError as e:
            raise OSError(f"Failed to create database at {path}: {e}") from e

    @classmethod
    def ephemeral(cls) -> StorageEngine:
        """Create ephemeral database that auto-deletes on close.

        Returns:
            StorageEngine instance with temporary database.
        """
        with tempfile.NamedTemporaryFile(suffix=".duckdb", delete=False) as temp_file:
            temp_path = Path(temp_file.name)

        # DuckDB must create the file itself
        temp_path.unlink()

        return cls(path=temp_path, read_only=False, _ephemeral=True)

    @classmethod
    def memory(cls) -> StorageEngine:
        """Create true in-memory database with no disk footprint.

        Best for unit tests and small exploratory datasets.

        Returns:
            StorageEngine instance with in-memory database.
        """
        return cls(path=None, read_only=False, _in_memory=True)

    @classmethod
    def open_existing(cls, path: Path, *, read_only: bool = True) -> StorageEngine:
        """Open existing database file.

        Args:
            path: Path to existing database file.
            read_only: If True (default), open in read-only mode allowing
                concurrent reads. Set to False for write access.

        Raises:
            FileNotFoundError: If database file doesn't exist.
        """
        if not path.exists():
            raise FileNotFoundError(f"Database file not found: {path}")
        return cls(path=path, read_only=read_only)

    @property
    def path(self) -> Path | None:
        """Path to the database file (None for in-memory databases)."""
        return self._path

    @property
    def read_only(self) -> bool:
        """Whether the database was opened in read-only mode."""
        return self._read_only

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """DuckDB connection for advanced operations.

        Raises:
            RuntimeError: If connection was closed or never established.
        """
        if self._conn is None:
            if self._closed:
                raise RuntimeError(
                    "Database connection has been closed. "
                    "Create a new StorageEngine instance to reconnect."
                )
            raise RuntimeError(
                "Database connection not established. "
                "Ensure the StorageEngine was initialized with a valid path."
            )
        return self._conn

    def _cleanup_ephemeral(self) -> None:
        """Close and delete an ephemeral database file. Idempotent."""
        if not self._is_ephemeral or self._path is None:
            return

        if self._conn is not None:
            try:
                self._conn.close()
            except duckdb.Error as e:
                _logger.debug("Failed to close ephemeral database connection: %s", e)
            finally:
                self._conn = None

        for candidate in (self._path, Path(str(self._path) + ".wal")):
            try:
                if candidate.exists():
                    candidate.unlink()
            except OSError as e:
                _logger.warning(
                    "Failed to delete ephemeral database file %s: %s", candidate, e
                )

        self._closed = True

    def close(self) -> None:
        """Close database connection and cleanup if ephemeral.

        Safe to call multiple times.
        """
        if self._is_ephemeral:
            self._cleanup_ephemeral()
        elif self._conn is not None:
            try:
                self._conn.close()
            except duckdb.Error as e:
                _logger.debug("Failed to close database connection: %s", e)
            finally:
                self._conn = None

        self._closed = True

    # =========================================================================
    # Schema
    # =========================================================================

    def ensure_schema(self) -> None:
        """Create the events and people tables if they don't exist."""
        self.connection.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
                project_id VARCHAR NOT NULL,
                insert_id VARCHAR NOT NULL,
                event_name VARCHAR NOT NULL,
                event_time TIMESTAMP NOT NULL,
                distinct_id VARCHAR NOT NULL,
                properties JSON,
                PRIMARY KEY (project_id, insert_id)
            )
            """
        )
        self.connection.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {PEOPLE_TABLE} (
                project_id VARCHAR NOT NULL,
                distinct_id VARCHAR NOT NULL,
                properties JSON,
                last_seen TIMESTAMP,
                PRIMARY KEY (project_id, distinct_id)
            )
            """
        )

    def has_schema(self) -> bool:
        """Whether both the events and people tables exist."""
        result = self.connection.execute(
            """
            SELECT count(*) FROM information_schema.tables
            WHERE table_schema = 'main' AND table_name IN ($events, $people)
            """,
            {"events": EVENTS_TABLE, "people": PEOPLE_TABLE},
        ).fetchone()
        return bool(result and result[0] == 2)

    # =========================================================================
    # Ingestion
    # =========================================================================

    def _count(self, table: str, project_id: str) -> int:
        result = self.connection.execute(
            f"SELECT count(*) FROM {table} WHERE project_id = $project_id",
            {"project_id": project_id},
        ).fetchone()
        return int(result[0]) if result else 0

    def _batch_write(
        self,
        table: str,
        insert_sql: str,
        project_id: str,
        rows: Iterable[tuple[Any, ...]],
        progress_callback: Callable[[int], None] | None,
        batch_size: int,
    ) -> int:
        """Write rows in batches, committing after each batch.

        Per-batch commits keep memory bounded regardless of input size at the
        cost of atomicity: rows from committed batches remain if a later
        batch fails.

        Returns:
            Net number of rows added for the project.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        initial_count = self._count(table, project_id)
        batch: list[tuple[Any, ...]] = []

        self.connection.execute("BEGIN TRANSACTION")
        try:
            for row in rows:
                batch.append(row)
                if len(batch) >= batch_size:
                    self.connection.executemany(insert_sql, batch)
                    self.connection.execute("COMMIT")
                    self.connection.execute("BEGIN TRANSACTION")
                    batch = []
                    if progress_callback is not None:
                        written_so_far = self._count(table, project_id) - initial_count
                        progress_callback(written_so_far)

            if batch:
                self.connection.executemany(insert_sql, batch)
            self.connection.execute("COMMIT")
        except Exception:
            self.connection.execute("ROLLBACK")
            raise

        written = self._count(table, project_id) - initial_count
        if progress_callback is not None:
            progress_callback(written)
        return written

    def insert_events(
        self,
        project_id: str,
        records: Iterable[dict[str, Any]],
        *,
        progress_callback: Callable[[int], None] | None = None,
        batch_size: int = 1000,
    ) -> int:
        """Insert transformed events for a project.

        Records are the output of transform_event(). Duplicate insert ids
        within a project are skipped (INSERT OR IGNORE).

        Args:
            project_id: Tenant the events belong to.
            records: Iterable of event dicts (event_name, event_time,
                distinct_id, insert_id, properties).
            progress_callback: Optional callback invoked with cumulative row count.
            batch_size: Rows per INSERT/COMMIT cycle.

        Returns:
            Number of rows actually inserted (duplicates excluded).

        Raises:
            ValueError: If a record is missing a required field.
        """
        required = (
            "event_name",
            "event_time",
            "distinct_id",
            "insert_id",
            "properties",
        )

        def rows() -> Iterable[tuple[Any, ...]]:
            for record in records:
                for key in required:
                    if key not in record:
                        raise ValueError(f"Event record missing required field: {key}")
                yield (
                    project_id,
                    record["insert_id"],
                    record["event_name"],
                    record["event_time"],
                    record["distinct_id"],
                    json.dumps(record["properties"]),
                )

        insert_sql = (
            f"INSERT OR IGNORE INTO {EVENTS_TABLE} "
            "(project_id, insert_id, event_name, event_time, distinct_id, properties) "
            "VALUES (?, ?, ?, ?, ?, ?)"
        )
        count = self._batch_write(
            EVENTS_TABLE, insert_sql, project_id, rows(), progress_callback, batch_size
        )
        _logger.info("Inserted %d events for project %s", count, project_id)
        return count

    def upsert_people(
        self,
        project_id: str,
        records: Iterable[dict[str, Any]],
        *,
        progress_callback: Callable[[int], None] | None = None,
        batch_size: int = 1000,
    ) -> int:
        """Insert or replace user profiles for a project.

        The latest record for a distinct_id wins (INSERT OR REPLACE).

        Returns:
            Number of new profiles (replacements are not counted).

        Raises:
            ValueError: If a record is missing a required field.
        """

        def rows() -> Iterable[tuple[Any, ...]]:
            for record in records:
                for key in ("distinct_id", "properties"):
                    if key not in record:
                        raise ValueError(f"Person record missing required field: {key}")
                last_seen = record.get("last_seen")
                if last_seen is not None and not isinstance(last_seen, datetime):
                    raise ValueError("Person last_seen must be a datetime or None")
                yield (
                    project_id,
                    record["distinct_id"],
                    json.dumps(record["properties"]),
                    last_seen,
                )

        insert_sql = (
            f"INSERT OR REPLACE INTO {PEOPLE_TABLE} "
            "(project_id, distinct_id, properties, last_seen) VALUES (?, ?, ?, ?)"
        )
        count = self._batch_write(
            PEOPLE_TABLE, insert_sql, project_id, rows(), progress_callback, batch_size
        )
        _logger.info("Upserted people for project %s (%d new)", project_id, count)
        return count

    # =========================================================================
    # Query execution
    # =========================================================================

    def execute_rows(self, sql: str) -> SQLResult:
        """Execute ad-hoc SQL and return structured result with column metadata.

        Raises:
            QueryError: If query execution fails.
        """
        return self.execute_rows_params(sql, {})

    def execute_rows_params(
        self,
        sql: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> SQLResult:
        """Execute parameterized SQL on a fresh cursor.

        Each call uses its own cursor (a duplicate connection to the same
        database), so concurrent callers don't share statement state. When a
        timeout is given, a timer interrupts the cursor once it elapses.

        Args:
            sql: SQL text with $name placeholders.
            params: Values for every named placeholder.
            timeout: Seconds before the query is interrupted (None = no limit).

        Returns:
            SQLResult with columns and rows.

        Raises:
            QueryTimeoutError: If the timeout elapsed before completion.
            QueryError: If query execution fails.

        Example:
            ```python
            result = storage.execute_rows_params(
                "SELECT event_name, count(*) AS n FROM events "
                "WHERE project_id = $project_id GROUP BY 1",
                {"project_id": "proj-1"},
            )
            ```
        """
        cursor = self.connection.cursor()
        timer: threading.Timer | None = None
        if timeout is not None:
            timer = threading.Timer(timeout, cursor.interrupt)
            timer.daemon = True
            timer.start()
        try:
            relation = cursor.execute(sql, params) if params else cursor.execute(sql)
            columns = [desc[0] for desc in relation.description or []]
            rows = relation.fetchall()
            return SQLResult(columns=columns, rows=rows)
        except duckdb.InterruptException as e:
            raise QueryTimeoutError(
                timeout or 0.0, sql=sql, params=params, store_error=str(e)
            ) from e
        except duckdb.Error as e:
            raise QueryError(
                f"Query execution failed: {e}",
                sql=sql,
                params=params,
                store_error=str(e),
            ) from e
        finally:
            if timer is not None:
                timer.cancel()
            cursor.close()

    # =========================================================================
    # Introspection
    # =========================================================================

    def project_summary(self, project_id: str) -> ProjectSummary:
        """Row counts and event time span for one project."""
        events = self.execute_rows_params(
            f"""
            SELECT count(*), count(DISTINCT event_name),
                   min(event_time), max(event_time)
            FROM {EVENTS_TABLE} WHERE project_id = $project_id
            """,
            {"project_id": project_id},
        ).rows[0]
        people = self.execute_rows_params(
            f"SELECT count(*) FROM {PEOPLE_TABLE} WHERE project_id = $project_id",
            {"project_id": project_id},
        ).rows[0]
        return ProjectSummary(
            project_id=project_id,
            event_count=int(events[0]),
            people_count=int(people[0]),
            event_names=int(events[1]),
            first_event=events[2],
            last_event=events[3],
        )

    def __enter__(self) -> StorageEngine:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - close connection."""
        self.close()
