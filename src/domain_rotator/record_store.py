"""
Resource Record Store.

Adapter over the externally owned record tables, one table per endpoint
kind. The inventory system creates and deletes records; this store only
reads them and writes the rotated fields (port, server_port, host,
next_update_time, last_update_status). All methods take the connection of
the caller's unit of work.
"""

import sqlite3
from typing import Optional

from .config import KindConfig
from .database import quote_identifier
from .exceptions import RecordNotFoundError, ValidationError
from .models import ResourceRecord

# Columns the rotator adds to the external schema when missing
MANAGED_COLUMNS = (
    ("next_update_time", "BIGINT DEFAULT 0"),
    ("last_update_status", "VARCHAR(255) DEFAULT ''"),
)

_SELECT_COLUMNS = (
    'id, name, port, server_port, host, "show", next_update_time, last_update_status'
)


class ResourceRecordStore:
    """Reads and writes managed records across all configured kinds."""

    def __init__(self, kinds: list[KindConfig]) -> None:
        self._tables: dict[str, str] = {}
        for kind_config in kinds:
            # Fail fast on table names that cannot be placed into SQL
            self._tables[kind_config.kind] = quote_identifier(kind_config.table)

    @property
    def kinds(self) -> list[str]:
        return list(self._tables)

    def table_for(self, kind: str) -> str:
        """Return the quoted table name for a kind."""
        try:
            return self._tables[kind]
        except KeyError:
            raise ValidationError(
                message=f"Unknown kind: {kind}",
                details={"kind": kind, "known_kinds": self.kinds},
                code="unknown_kind",
            ) from None

    # ─── Schema ─────────────────────────────────────────────────────

    def table_exists(self, conn: sqlite3.Connection, kind: str) -> bool:
        name = self.table_for(kind).strip('"')
        row = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        ).fetchone()
        return row[0] > 0

    def create_table(self, conn: sqlite3.Connection, kind: str) -> None:
        """Create an empty record table (bootstrap of a fresh database only)."""
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_for(kind)} (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                port TEXT NOT NULL DEFAULT '',
                server_port INTEGER NOT NULL DEFAULT 0,
                host TEXT NOT NULL DEFAULT '',
                "show" INTEGER NOT NULL DEFAULT 1,
                next_update_time BIGINT DEFAULT 0,
                last_update_status VARCHAR(255) DEFAULT ''
            )
        """)

    def ensure_columns(self, conn: sqlite3.Connection, kind: str) -> list[str]:
        """
        Add the rotator's bookkeeping columns if absent. Idempotent.

        Returns:
            Names of the columns that were added
        """
        table = self.table_for(kind)
        existing = {
            row["name"] for row in conn.execute(f"PRAGMA table_info({table})")
        }
        added = []
        for column, column_type in MANAGED_COLUMNS:
            if column not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
                added.append(column)
        return added

    # ─── Reads ──────────────────────────────────────────────────────

    def get(self, conn: sqlite3.Connection, kind: str, record_id: int) -> ResourceRecord:
        """
        Raises:
            RecordNotFoundError: If no record has this id
        """
        row = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM {self.table_for(kind)} WHERE id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(
                message=f"Record {kind}/{record_id} not found",
                details={"kind": kind, "record_id": record_id},
            )
        return self._row_to_record(kind, row)

    def list_records(self, conn: sqlite3.Connection, kind: str) -> list[ResourceRecord]:
        rows = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM {self.table_for(kind)} ORDER BY id"
        ).fetchall()
        return [self._row_to_record(kind, row) for row in rows]

    def list_due(self, conn: sqlite3.Connection, kind: str, now: int) -> list[ResourceRecord]:
        """Records whose next_update_time has passed."""
        rows = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM {self.table_for(kind)} "
            "WHERE COALESCE(next_update_time, 0) <= ? ORDER BY id",
            (now,),
        ).fetchall()
        return [self._row_to_record(kind, row) for row in rows]

    def count(self, conn: sqlite3.Connection, kind: str) -> int:
        return conn.execute(f"SELECT COUNT(*) FROM {self.table_for(kind)}").fetchone()[0]

    def record_ids(self, conn: sqlite3.Connection, kind: str) -> list[int]:
        rows = conn.execute(f"SELECT id FROM {self.table_for(kind)} ORDER BY id").fetchall()
        return [row[0] for row in rows]

    # ─── Writes ─────────────────────────────────────────────────────

    def update_assignment(
        self,
        conn: sqlite3.Connection,
        kind: str,
        record_id: int,
        port: int,
        host: str,
        next_update_time: int,
    ) -> None:
        """Write a rotation's new port, host and next due time."""
        cursor = conn.execute(
            f"UPDATE {self.table_for(kind)} "
            "SET port = ?, server_port = ?, host = ?, next_update_time = ? WHERE id = ?",
            (str(port), port, host, next_update_time, record_id),
        )
        self._require_row(cursor, kind, record_id)

    def set_status(
        self,
        conn: sqlite3.Connection,
        kind: str,
        record_id: int,
        status: str,
        next_update_time: Optional[int] = None,
    ) -> None:
        """Write last_update_status, optionally forcing the next due time."""
        table = self.table_for(kind)
        if next_update_time is None:
            cursor = conn.execute(
                f"UPDATE {table} SET last_update_status = ? WHERE id = ?",
                (status, record_id),
            )
        else:
            cursor = conn.execute(
                f"UPDATE {table} SET last_update_status = ?, next_update_time = ? WHERE id = ?",
                (status, next_update_time, record_id),
            )
        self._require_row(cursor, kind, record_id)

    def reschedule_all(self, conn: sqlite3.Connection, kind: str, next_update_time: int) -> int:
        cursor = conn.execute(
            f"UPDATE {self.table_for(kind)} SET next_update_time = ?",
            (next_update_time,),
        )
        return cursor.rowcount

    def insert_sample(
        self,
        conn: sqlite3.Connection,
        kind: str,
        record_id: int,
        port: int,
    ) -> None:
        """Insert a placeholder record into an empty table."""
        conn.execute(
            f'INSERT INTO {self.table_for(kind)} (id, name, port, server_port, host, "show") '
            "VALUES (?, ?, ?, ?, '', 1)",
            (record_id, f"{kind}-server-{record_id}", str(port), port),
        )

    # ─── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _require_row(cursor: sqlite3.Cursor, kind: str, record_id: int) -> None:
        if cursor.rowcount == 0:
            raise RecordNotFoundError(
                message=f"Record {kind}/{record_id} not found",
                details={"kind": kind, "record_id": record_id},
            )

    @staticmethod
    def _row_to_record(kind: str, row: sqlite3.Row) -> ResourceRecord:
        return ResourceRecord(
            kind=kind,
            id=row["id"],
            name=row["name"] or "",
            port=row["port"] or "",
            numeric_port=row["server_port"] or 0,
            host=row["host"] or "",
            show=bool(row["show"]),
            next_update_time=row["next_update_time"] or 0,
            last_update_status=row["last_update_status"] or "",
        )
