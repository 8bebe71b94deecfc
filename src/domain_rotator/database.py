"""
SQLite access for the domain rotator.

Every unit of work opens its own connection, so rotations running in worker
threads never share a connection. Write transactions start with
BEGIN IMMEDIATE, which reserves the database for writing before anything is
read: two rotations can never both read the same eligible domain and then
both claim it.
"""

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from .exceptions import StoreError, ValidationError

_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def quote_identifier(name: str) -> str:
    """
    Quote a table or column name for interpolation into SQL.

    Raises:
        ValidationError: If the name is not a plain identifier
    """
    if not _IDENTIFIER_PATTERN.fullmatch(name or ""):
        raise ValidationError(
            message=f"Invalid table name: {name!r}",
            details={"name": name},
            code="invalid_table",
        )
    return f'"{name}"'


class Database:
    """Connection factory and transaction boundary for one SQLite file."""

    def __init__(self, path: Union[str, Path], busy_timeout_ms: int = 5000) -> None:
        self._path = str(path)
        self._busy_timeout_ms = busy_timeout_ms

    @property
    def path(self) -> str:
        return self._path

    def connect(self) -> sqlite3.Connection:
        """
        Open a new connection in autocommit mode.

        Transactions are issued explicitly by transaction().

        Raises:
            StoreError: If the database cannot be opened
        """
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_ms / 1000,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            if self._path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise StoreError(
                message=f"Failed to open database: {e}",
                details={"path": self._path},
            ) from e
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a write unit of work: all statements commit together or not at all.

        Usage:
            with database.transaction() as conn:
                records.update_assignment(conn, ...)
                pool.claim(conn, ...)

        sqlite3 errors raised inside the block are converted to StoreError;
        any exception rolls the transaction back and propagates.
        """
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(
                    message=f"Failed to begin transaction: {e}",
                    details={"path": self._path},
                ) from e

            try:
                yield conn
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StoreError(message=f"Database error: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StoreError(
                    message=f"Transaction commit failed: {e}",
                    code="commit_failed",
                ) from e
        finally:
            conn.close()

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only queries, sqlite3 errors as StoreError."""
        conn = self.connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(message=f"Database error: {e}") from e
        finally:
            conn.close()

    def check(self) -> None:
        """Verify the database can be opened and queried."""
        with self.reader() as conn:
            conn.execute("SELECT 1").fetchone()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
