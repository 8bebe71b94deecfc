"""
Domain Pool Store.

Data access over the server_domains table: one row per (kind, owner record,
domain). A domain is eligible for reuse only when it is not in use and has
either never been used or rested for the full cooldown since it was last
assigned. All methods take the connection of the caller's unit of work.
"""

import sqlite3
from typing import Iterable, Optional

from .config import DEFAULT_COOLDOWN_SECONDS
from .exceptions import (
    DomainInUseError,
    DomainNotFoundError,
    DuplicateDomainError,
    IsCurrentHostError,
)
from .models import DomainEntry, PoolStats

POOL_TABLE = "server_domains"

_SELECT_COLUMNS = 'id, server_table, server_id, domain, in_use, "order", last_used_time'

_ELIGIBLE_CLAUSE = "in_use = 0 AND (last_used_time = 0 OR last_used_time <= ?)"


class DomainPoolStore:
    """Per-record domain pools with usage and cooldown bookkeeping."""

    def __init__(self, cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS) -> None:
        self._cooldown_seconds = cooldown_seconds

    @property
    def cooldown_seconds(self) -> int:
        return self._cooldown_seconds

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS server_domains (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                server_table TEXT NOT NULL,
                server_id INTEGER NOT NULL,
                domain TEXT NOT NULL,
                in_use INTEGER NOT NULL DEFAULT 0,
                "order" INTEGER NOT NULL,
                last_used_time BIGINT NOT NULL DEFAULT 0,
                UNIQUE (server_table, server_id, domain)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_server_domains_all "
            "ON server_domains (server_table, server_id, last_used_time)"
        )

    # ─── Selection ──────────────────────────────────────────────────

    def list_eligible(
        self,
        conn: sqlite3.Connection,
        kind: str,
        owner_id: int,
        now: int,
        exclude_domain: str = "",
    ) -> list[DomainEntry]:
        """
        Eligible entries, least recently used first.

        Never-used entries (last_used_time = 0) sort first. Ties keep
        insertion order.
        """
        query = (
            f"SELECT {_SELECT_COLUMNS} FROM server_domains "
            f"WHERE server_table = ? AND server_id = ? AND {_ELIGIBLE_CLAUSE}"
        )
        params: list = [kind, owner_id, now - self._cooldown_seconds]
        if exclude_domain:
            query += " AND domain != ?"
            params.append(exclude_domain)
        query += " ORDER BY last_used_time ASC, id ASC"
        return [self._row_to_entry(row) for row in conn.execute(query, params)]

    def release(self, conn: sqlite3.Connection, kind: str, owner_id: int, domain: str) -> bool:
        """
        Mark a domain no longer in use. last_used_time is kept, so the
        cooldown still counts from the moment it was last assigned.

        Returns:
            False if the pool has no entry for this domain
        """
        cursor = conn.execute(
            "UPDATE server_domains SET in_use = 0 "
            "WHERE server_table = ? AND server_id = ? AND domain = ?",
            (kind, owner_id, domain),
        )
        return cursor.rowcount > 0

    def claim(self, conn: sqlite3.Connection, entry_id: int, now: int) -> None:
        cursor = conn.execute(
            "UPDATE server_domains SET in_use = 1, last_used_time = ? WHERE id = ?",
            (now, entry_id),
        )
        if cursor.rowcount == 0:
            raise DomainNotFoundError(
                message=f"Domain entry {entry_id} not found",
                details={"entry_id": entry_id},
            )

    def bump_order(self, conn: sqlite3.Connection, kind: str, owner_id: int, entry_id: int) -> int:
        """Move an entry to the end of the owner's order. Returns the new order."""
        new_order = self._max_order(conn, kind, owner_id) + 1
        conn.execute(
            'UPDATE server_domains SET "order" = ? WHERE id = ?',
            (new_order, entry_id),
        )
        return new_order

    # ─── Pool management ────────────────────────────────────────────

    def add(self, conn: sqlite3.Connection, kind: str, owner_id: int, domain: str) -> DomainEntry:
        """
        Register a new, never-used domain for a record.

        Raises:
            DuplicateDomainError: If the record already has this domain
        """
        existing = conn.execute(
            "SELECT id FROM server_domains "
            "WHERE server_table = ? AND server_id = ? AND domain = ?",
            (kind, owner_id, domain),
        ).fetchone()
        if existing is not None:
            raise self._duplicate(kind, owner_id, domain)

        order = self._max_order(conn, kind, owner_id) + 1
        try:
            cursor = conn.execute(
                'INSERT INTO server_domains (server_table, server_id, domain, in_use, "order", last_used_time) '
                "VALUES (?, ?, ?, 0, ?, 0)",
                (kind, owner_id, domain, order),
            )
        except sqlite3.IntegrityError as e:
            raise self._duplicate(kind, owner_id, domain) from e

        return DomainEntry(
            id=cursor.lastrowid,
            kind=kind,
            owner_id=owner_id,
            domain=domain,
            in_use=False,
            order=order,
            last_used_time=0,
        )

    def remove(
        self,
        conn: sqlite3.Connection,
        kind: str,
        owner_id: int,
        entry_id: int,
        current_host: str,
    ) -> DomainEntry:
        """
        Delete an idle entry from a record's pool.

        Raises:
            DomainNotFoundError: If the entry is not in this record's pool
            DomainInUseError: If the entry is in use
            IsCurrentHostError: If the entry is the record's current host
        """
        entry = self.get(conn, entry_id)
        if entry is None or entry.kind != kind or entry.owner_id != owner_id:
            raise DomainNotFoundError(
                message=f"Domain entry {entry_id} not found",
                details={"kind": kind, "owner_id": owner_id, "entry_id": entry_id},
            )
        if entry.in_use:
            raise DomainInUseError(
                message=f"Domain {entry.domain} is in use",
                details={"kind": kind, "owner_id": owner_id, "domain": entry.domain},
            )
        if current_host and entry.domain == current_host:
            raise IsCurrentHostError(
                message=f"Domain {entry.domain} is the record's current host",
                details={"kind": kind, "owner_id": owner_id, "domain": entry.domain},
            )

        conn.execute("DELETE FROM server_domains WHERE id = ?", (entry_id,))
        return entry

    def seed(
        self,
        conn: sqlite3.Connection,
        kind: str,
        owner_id: int,
        domains: Iterable[str],
    ) -> int:
        """Insert missing seed domains with order = position + 1. Returns rows added."""
        added = 0
        for position, domain in enumerate(domains):
            cursor = conn.execute(
                'INSERT OR IGNORE INTO server_domains (server_table, server_id, domain, in_use, "order", last_used_time) '
                "VALUES (?, ?, ?, 0, ?, 0)",
                (kind, owner_id, domain, position + 1),
            )
            added += cursor.rowcount
        return added

    def reset_usage(self, conn: sqlite3.Connection) -> int:
        """Mark every entry unused and never used."""
        return conn.execute("UPDATE server_domains SET in_use = 0, last_used_time = 0").rowcount

    def mark_in_use(
        self,
        conn: sqlite3.Connection,
        kind: str,
        owner_id: int,
        domain: str,
        now: int,
    ) -> bool:
        cursor = conn.execute(
            "UPDATE server_domains SET in_use = 1, last_used_time = ? "
            "WHERE server_table = ? AND server_id = ? AND domain = ?",
            (now, kind, owner_id, domain),
        )
        return cursor.rowcount > 0

    # ─── Reads ──────────────────────────────────────────────────────

    def get(self, conn: sqlite3.Connection, entry_id: int) -> Optional[DomainEntry]:
        row = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM server_domains WHERE id = ?",
            (entry_id,),
        ).fetchone()
        return self._row_to_entry(row) if row is not None else None

    def list_domains(self, conn: sqlite3.Connection, kind: str, owner_id: int) -> list[DomainEntry]:
        """All entries of a record's pool, least recently used first."""
        rows = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM server_domains "
            "WHERE server_table = ? AND server_id = ? ORDER BY last_used_time ASC, id ASC",
            (kind, owner_id),
        )
        return [self._row_to_entry(row) for row in rows]

    def list_all(self, conn: sqlite3.Connection) -> list[DomainEntry]:
        rows = conn.execute(f"SELECT {_SELECT_COLUMNS} FROM server_domains ORDER BY id")
        return [self._row_to_entry(row) for row in rows]

    def count_all(self, conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COUNT(*) FROM server_domains").fetchone()[0]

    def pool_stats(self, conn: sqlite3.Connection, kind: str, owner_id: int, now: int) -> PoolStats:
        total = conn.execute(
            "SELECT COUNT(*) FROM server_domains WHERE server_table = ? AND server_id = ?",
            (kind, owner_id),
        ).fetchone()[0]
        available = conn.execute(
            "SELECT COUNT(*) FROM server_domains "
            f"WHERE server_table = ? AND server_id = ? AND {_ELIGIBLE_CLAUSE}",
            (kind, owner_id, now - self._cooldown_seconds),
        ).fetchone()[0]
        return PoolStats(total=total, available=available)

    # ─── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _max_order(conn: sqlite3.Connection, kind: str, owner_id: int) -> int:
        row = conn.execute(
            'SELECT COALESCE(MAX("order"), 0) FROM server_domains '
            "WHERE server_table = ? AND server_id = ?",
            (kind, owner_id),
        ).fetchone()
        return row[0]

    @staticmethod
    def _duplicate(kind: str, owner_id: int, domain: str) -> DuplicateDomainError:
        return DuplicateDomainError(
            message=f"Domain {domain} already exists for {kind}/{owner_id}",
            details={"kind": kind, "owner_id": owner_id, "domain": domain},
        )

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> DomainEntry:
        return DomainEntry(
            id=row["id"],
            kind=row["server_table"],
            owner_id=row["server_id"],
            domain=row["domain"],
            in_use=bool(row["in_use"]),
            order=row["order"],
            last_used_time=row["last_used_time"],
        )
