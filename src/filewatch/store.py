"""SQLite-backed event store."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .exceptions import QueryFailedError, StoreUnavailableError
from .models import EventKind, EventRecord, format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)

TABLE_NAME = "file_events"

_SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_name TEXT,
        file_extension TEXT,
        path TEXT,
        event_type TEXT,
        timestamp TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_extension ON {TABLE_NAME}(file_extension);
    CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_event_type ON {TABLE_NAME}(event_type);
    CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_timestamp ON {TABLE_NAME}(timestamp);
    CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_path ON {TABLE_NAME}(path);
"""

_COLUMNS = "file_name, file_extension, path, event_type, timestamp"

Bound = Union[datetime, str]


class EventStore:
    """
    Append-only table of recorded filesystem events.

    The store owns its connection. Every operation checks the connection
    first and reconnects once if it is missing or stale, so a store can
    outlive a closed or invalidated connection. Operations are serialized
    with a lock.
    """

    def __init__(self, db_path: Union[Path, str] = Path("file_events.db")):
        """
        Initialize the store. No connection is opened until first use.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the connection and create the schema if needed."""
        with self._lock:
            self._ensure_connection()

    def close(self) -> None:
        """Close the connection. The next operation reconnects."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            conn.row_factory = sqlite3.Row
            conn.executescript(_SCHEMA)
            self._normalize_legacy_timestamps(conn)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open event store {self.db_path}: {e}") from e
        logger.debug(f"Connected to event store {self.db_path}")
        return conn

    def _normalize_legacy_timestamps(self, conn: sqlite3.Connection) -> None:
        """
        Rewrite ISO-8601 timestamps (``2025-05-13T10:30``) into storage format.

        Range queries compare the stored text, so every row has to use the
        same fixed-width format. Rows that do not parse are left untouched
        and surface as undecodable on read.
        """
        rows = conn.execute(
            f"SELECT id, timestamp FROM {TABLE_NAME} WHERE instr(timestamp, 'T') > 0"
        ).fetchall()
        if not rows:
            return

        updates = []
        for row in rows:
            try:
                updates.append((format_timestamp(parse_timestamp(row["timestamp"])), row["id"]))
            except (TypeError, ValueError):
                logger.warning(f"Leaving unparseable timestamp {row['timestamp']!r} in row {row['id']}")
        if not updates:
            return

        conn.execute("BEGIN")
        try:
            conn.executemany(f"UPDATE {TABLE_NAME} SET timestamp = ? WHERE id = ?", updates)
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        logger.info(f"Normalized {len(updates)} legacy timestamps in {self.db_path}")

    def _ensure_connection(self) -> sqlite3.Connection:
        """Return a live connection, reconnecting once if needed. Caller holds the lock."""
        if self._conn is not None:
            try:
                self._conn.execute("SELECT 1")
                return self._conn
            except sqlite3.Error:
                logger.info("Event store connection went stale, reconnecting")
                try:
                    self._conn.close()
                except sqlite3.Error:
                    pass
                self._conn = None

        self._conn = self._open()
        return self._conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, record: EventRecord) -> None:
        """
        Append one record.

        Raises:
            StoreUnavailableError: If no connection could be obtained or the
                write failed
        """
        row = record.to_dict()
        with self._lock:
            conn = self._ensure_connection()
            try:
                conn.execute(
                    f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (
                        row["file_name"],
                        row["file_extension"],
                        row["path"],
                        row["event_type"],
                        row["timestamp"],
                    ),
                )
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to save event: {e}") from e

    def save_many(self, records: Iterable[EventRecord]) -> int:
        """
        Append several records atomically.

        Returns:
            Number of records written
        """
        rows = [
            (r["file_name"], r["file_extension"], r["path"], r["event_type"], r["timestamp"])
            for r in (record.to_dict() for record in records)
        ]
        if not rows:
            return 0

        with self._lock:
            conn = self._ensure_connection()
            try:
                conn.execute("BEGIN")
                conn.executemany(
                    f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    rows,
                )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreUnavailableError(f"Failed to save events: {e}") from e
        return len(rows)

    def clear(self) -> int:
        """
        Delete every record, keeping the schema.

        Returns:
            Number of records removed
        """
        with self._lock:
            conn = self._ensure_connection()
            try:
                cursor = conn.execute(f"DELETE FROM {TABLE_NAME}")
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to clear events: {e}") from e
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _select(self, where: str = "", params: tuple = ()) -> List[EventRecord]:
        sql = f"SELECT {_COLUMNS} FROM {TABLE_NAME}"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY id"

        with self._lock:
            conn = self._ensure_connection()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise QueryFailedError(f"Query failed: {e}") from e

        records = []
        for row in rows:
            try:
                records.append(EventRecord.from_dict(dict(row)))
            except (KeyError, TypeError, ValueError) as e:
                raise QueryFailedError(f"Undecodable event row {dict(row)}: {e}") from e
        return records

    def query_all(self) -> List[EventRecord]:
        """Return every record in insertion order."""
        return self._select()

    def query_by_extension(self, extension: Optional[str]) -> List[EventRecord]:
        """
        Return records with exactly this extension.

        An empty or None extension means "all files" and returns everything.
        """
        if not extension:
            return self._select()
        return self._select("file_extension = ?", (extension,))

    def query_by_kind(self, kind: Union[EventKind, str]) -> List[EventRecord]:
        """Return records of one event kind."""
        try:
            kind = EventKind.parse(kind)
        except ValueError as e:
            raise QueryFailedError(str(e)) from e
        return self._select("event_type = ?", (kind.value,))

    def query_by_date_range(self, start: Bound, end: Bound) -> List[EventRecord]:
        """
        Return records stamped between ``start`` and ``end``, both inclusive.

        Bounds are compared as ``YYYY-MM-DD HH:MM:SS`` strings, which sorts
        chronologically because the format is fixed width.

        Raises:
            QueryFailedError: If a bound is unparseable or start is after end
        """
        start_text = format_bound(start, "start")
        end_text = format_bound(end, "end")
        if start_text > end_text:
            raise QueryFailedError(f"Empty date range: {start_text} is after {end_text}")
        return self._select("timestamp BETWEEN ? AND ?", (start_text, end_text))

    def query_by_directory(self, prefix: str) -> List[EventRecord]:
        """Return records whose path starts with ``prefix`` (literal, case-sensitive)."""
        if not prefix:
            return self._select()
        return self._select("substr(path, 1, ?) = ?", (len(prefix), prefix))

    def count(self) -> int:
        with self._lock:
            conn = self._ensure_connection()
            try:
                return conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]
            except sqlite3.Error as e:
                raise QueryFailedError(f"Count failed: {e}") from e

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def format_bound(value: Bound, name: str = "bound") -> str:
    """Render a datetime or timestamp string in storage format, or raise QueryFailedError."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    try:
        return format_timestamp(parse_timestamp(value))
    except (TypeError, ValueError) as e:
        raise QueryFailedError(f"Invalid {name} timestamp {value!r}: {e}") from e
