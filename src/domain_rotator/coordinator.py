"""
Rotation Transaction Coordinator.

Performs one rotation of a record's public identity as a single unit of
work against the database:

1. read the record's current host and port
2. release the current host's pool entry
3. draw a new port distinct from the current one
4. list eligible pool entries, excluding the current host
5. select the least recently used entry
6. write the record's new port, host and next due time
7. claim the selected entry
8. on scheduled rotations, move the entry to the end of the pool order
9. commit

Any failure rolls every step back. Rotations of the same pool are
serialized by a per-pool lock, and the database transaction is opened with
BEGIN IMMEDIATE, so no two rotations can select the same entry.
"""

import asyncio
import time
from collections import defaultdict
from typing import Optional

from .audit_logger import AuditLogger, NullLogger
from .config import RotationConfig, RuntimeSettings
from .database import Database
from .domain_pool import DomainPoolStore
from .enums import RotationPhase, RotationTrigger
from .exceptions import NoAvailableDomainError
from .models import STATUS_FAILED_PREFIX, ResourceRecord, RotationOutcome
from .port_allocator import PortAllocator
from .record_store import ResourceRecordStore

COMPONENT = "coordinator"


class RotationCoordinator:
    """Entry point shared by the scheduler and on-demand triggers."""

    def __init__(
        self,
        database: Database,
        records: ResourceRecordStore,
        pool: DomainPoolStore,
        settings: RuntimeSettings,
        allocator: Optional[PortAllocator] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._database = database
        self._records = records
        self._pool = pool
        self._settings = settings
        self._allocator = allocator or PortAllocator()
        self._logger = logger or NullLogger()
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}
        # Rotations holding or waiting on each lock; a lock is dropped at zero
        self._lock_users: dict[tuple[str, int], int] = defaultdict(int)
        self._in_flight: set[tuple[str, int]] = set()

    async def rotate(
        self,
        kind: str,
        record_id: int,
        now: Optional[int] = None,
        bump_order_on_success: bool = False,
    ) -> RotationOutcome:
        """
        Rotate one record's port and domain.

        Args:
            kind: Endpoint kind of the record
            record_id: Record id within the kind
            now: Rotation time in unix seconds (defaults to the current time)
            bump_order_on_success: Move the chosen domain to the end of the
                                   pool order (scheduled rotations)

        Returns:
            Successful RotationOutcome

        Raises:
            RecordNotFoundError, NoDistinctPortError, NoAvailableDomainError,
            StoreError, ValidationError: nothing was changed
        """
        if now is None:
            now = int(time.time())
        # Reject unknown kinds before creating a lock for them
        self._records.table_for(kind)

        key = (kind, record_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                self._in_flight.add(key)
                try:
                    return await asyncio.to_thread(
                        self._rotate_in_transaction,
                        kind,
                        record_id,
                        now,
                        bump_order_on_success,
                        self._settings.snapshot(),
                    )
                finally:
                    self._in_flight.discard(key)
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    async def write_status(
        self,
        kind: str,
        record_id: int,
        status: str,
        next_update_time: Optional[int] = None,
    ) -> None:
        """Record a rotation result on the record, in its own transaction."""
        await asyncio.to_thread(
            self._write_status, kind, record_id, status, next_update_time
        )

    def is_rotating(self, kind: str, record_id: int) -> bool:
        return (kind, record_id) in self._in_flight

    def pool_lock_count(self) -> int:
        """Number of per-pool locks currently held or awaited."""
        return len(self._locks)

    def phase(self, record: ResourceRecord, now: int) -> RotationPhase:
        """Where a record currently is in its rotation lifecycle."""
        if self.is_rotating(record.kind, record.id):
            return RotationPhase.ROTATING
        if record.is_due(now):
            return RotationPhase.DUE
        if record.last_update_status.startswith(STATUS_FAILED_PREFIX):
            return RotationPhase.FAILED
        return RotationPhase.ROTATED

    def _rotate_in_transaction(
        self,
        kind: str,
        record_id: int,
        now: int,
        bump_order_on_success: bool,
        settings: RotationConfig,
    ) -> RotationOutcome:
        context = {"kind": kind, "record_id": record_id, "now": now}
        self._logger.debug(COMPONENT, "Rotation started", context)

        try:
            with self._database.transaction() as conn:
                record = self._records.get(conn, kind, record_id)

                if record.host and not self._pool.release(conn, kind, record_id, record.host):
                    self._logger.warn(
                        COMPONENT,
                        "Current host is missing from the domain pool",
                        {**context, "host": record.host},
                    )

                port = self._allocator.pick(
                    settings.port_min, settings.port_max, exclude=record.numeric_port
                )

                candidates = self._pool.list_eligible(
                    conn, kind, record_id, now, exclude_domain=record.host
                )
                if not candidates:
                    raise NoAvailableDomainError(
                        message="No available domain",
                        details={**context, "current_host": record.host},
                    )
                selected = candidates[0]

                next_update_time = now + settings.update_interval_seconds
                self._records.update_assignment(
                    conn, kind, record_id, port, selected.domain, next_update_time
                )
                self._pool.claim(conn, selected.id, now)
                if bump_order_on_success:
                    self._pool.bump_order(conn, kind, record_id, selected.id)
        except Exception as e:
            self._logger.log_error(COMPONENT, "Rotation aborted", e, context)
            raise

        self._logger.info(
            COMPONENT,
            "Rotation committed",
            {
                **context,
                "old_host": record.host,
                "old_port": record.numeric_port,
                "host": selected.domain,
                "port": port,
                "next_update_time": next_update_time,
            },
        )
        return RotationOutcome(
            kind=kind,
            record_id=record_id,
            trigger=RotationTrigger.SCHEDULED if bump_order_on_success else RotationTrigger.ON_DEMAND,
            success=True,
            port=port,
            host=selected.domain,
            next_update_time=next_update_time,
        )

    def _write_status(
        self,
        kind: str,
        record_id: int,
        status: str,
        next_update_time: Optional[int],
    ) -> None:
        with self._database.transaction() as conn:
            self._records.set_status(conn, kind, record_id, status, next_update_time)
