"""
Rotator service: the invocation surface offered to the surrounding
application (CLI, panel handlers).

Wires the stores, the coordinator and the sweeper together from a
SystemConfig, and implements the operator actions: rotate now, pool
management, interval and port-range changes, plus the startup tasks of
schema evolution, bootstrap seeding and usage reconciliation.
"""

import asyncio
import time
from typing import Callable, Optional

from .audit_logger import AuditLogger, NullLogger
from .config import SECONDS_PER_HOUR, RotationConfig, RuntimeSettings, SystemConfig, validate_interval
from .coordinator import RotationCoordinator
from .database import Database
from .domain_pool import DomainPoolStore
from .domain_validator import DomainValidator
from .enums import RotationTrigger
from .exceptions import RecordNotFoundError, RotatorError, ValidationError
from .models import DomainEntry, PoolStats, RecordSummary, RotationOutcome
from .port_allocator import PortAllocator
from .record_store import ResourceRecordStore
from .retry_manager import RetryManager
from .scheduler import RotationSweeper, Scheduler, SweepReport

COMPONENT = "service"


class RotatorService:
    """Facade over the rotation engine."""

    def __init__(
        self,
        config: SystemConfig,
        logger: Optional[AuditLogger] = None,
        on_settings_change: Optional[Callable[[RotationConfig], None]] = None,
        allocator: Optional[PortAllocator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._logger = logger or NullLogger()
        self._clock = clock
        self.settings = RuntimeSettings(config.rotation, on_change=on_settings_change)
        self.database = Database(config.database.path, config.database.busy_timeout_ms)
        self.records = ResourceRecordStore(config.kinds)
        self.pool = DomainPoolStore(cooldown_seconds=config.rotation.cooldown_seconds)
        self.validator = DomainValidator()
        self.coordinator = RotationCoordinator(
            database=self.database,
            records=self.records,
            pool=self.pool,
            settings=self.settings,
            allocator=allocator,
            logger=self._logger,
        )
        self.sweeper = RotationSweeper(
            database=self.database,
            records=self.records,
            coordinator=self.coordinator,
            retry_manager=RetryManager(config.retry),
            settings=self.settings,
            logger=self._logger,
        )

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else now

    # ─── Startup ────────────────────────────────────────────────────

    def migrate(self, create_tables: bool = False) -> None:
        """
        Create the domain pool table and add the rotator's columns to every
        record table. With create_tables, missing record tables are created
        (fresh databases only; normally the inventory system owns them).
        """
        with self.database.transaction() as conn:
            self.pool.ensure_schema(conn)
            for kind in self.records.kinds:
                if not self.records.table_exists(conn, kind):
                    if not create_tables:
                        raise ValidationError(
                            message=f"Record table for kind '{kind}' does not exist",
                            details={"kind": kind},
                            code="missing_table",
                        )
                    self.records.create_table(conn, kind)
                    self._logger.info(COMPONENT, "Created record table", {"kind": kind})
                added = self.records.ensure_columns(conn, kind)
                if added:
                    self._logger.info(
                        COMPONENT, "Added columns to record table", {"kind": kind, "columns": added}
                    )

    def seed_domains(self, sample_records: bool = False) -> int:
        """
        Seed every record's pool with the configured domains, if the pool
        table is still empty. With sample_records, an empty record table
        first receives one placeholder record.

        Returns:
            Number of domain entries inserted
        """
        seed = self._config.seed
        with self.database.transaction() as conn:
            if self.pool.count_all(conn) > 0:
                self._logger.info(COMPONENT, "Domain pool already populated, skipping seed")
                return 0

            inserted = 0
            for kind in self.records.kinds:
                if sample_records and self.records.count(conn, kind) == 0:
                    self.records.insert_sample(conn, kind, seed.sample_record_id, seed.sample_port)
                    self._logger.info(
                        COMPONENT, "Inserted sample record", {"kind": kind, "record_id": seed.sample_record_id}
                    )
                for record_id in self.records.record_ids(conn, kind):
                    inserted += self.pool.seed(conn, kind, record_id, seed.domains)

        self._logger.info(COMPONENT, "Domain pool seeded", {"inserted": inserted})
        return inserted

    def reconcile(self, now: Optional[int] = None) -> int:
        """
        Rebuild pool usage from the records: every entry becomes unused and
        never used, then each record's current host is marked in use as of
        now.

        Returns:
            Number of entries marked in use
        """
        now = self._now(now)
        marked = 0
        with self.database.transaction() as conn:
            self.pool.reset_usage(conn)
            for kind in self.records.kinds:
                for record in self.records.list_records(conn, kind):
                    if not record.host:
                        continue
                    if self.pool.mark_in_use(conn, kind, record.id, record.host, now):
                        marked += 1
                    else:
                        self._logger.warn(
                            COMPONENT,
                            "Record host is missing from its domain pool",
                            {"kind": kind, "record_id": record.id, "host": record.host},
                        )

        self._logger.info(COMPONENT, "Pool usage reconciled", {"in_use": marked})
        return marked

    def prepare(self, now: Optional[int] = None) -> None:
        """Startup sequence: migrate, seed, reconcile."""
        self.migrate()
        if self._config.seed.domains:
            self.seed_domains()
        self.reconcile(now)

    # ─── Rotation ───────────────────────────────────────────────────

    async def rotate_now(self, kind: str, record_id: int, now: Optional[int] = None) -> RotationOutcome:
        """
        Rotate one record immediately: a single attempt, no retry, and the
        pool order is left untouched. The status is written either way.

        Returns:
            RotationOutcome; on failure, success is False and error holds
            the typed failure
        """
        self._check_record_id(record_id)
        now = self._now(now)
        try:
            outcome = await self.coordinator.rotate(
                kind, record_id, now, bump_order_on_success=False
            )
        except RotatorError as e:
            outcome = RotationOutcome(
                kind=kind,
                record_id=record_id,
                trigger=RotationTrigger.ON_DEMAND,
                success=False,
                error=e,
            )
            self._logger.log_error(
                COMPONENT, "On-demand rotation failed", e, {"kind": kind, "record_id": record_id}
            )

        # An unknown kind or missing record leaves nothing to write to
        if not isinstance(outcome.error, (ValidationError, RecordNotFoundError)):
            try:
                await self.coordinator.write_status(kind, record_id, outcome.status_text)
            except RotatorError as e:
                self._logger.log_error(
                    COMPONENT, "Failed to record rotation status", e, {"kind": kind, "record_id": record_id}
                )
        return outcome

    async def sweep(self, now: Optional[int] = None) -> SweepReport:
        return await self.sweeper.sweep(self._now(now))

    def build_scheduler(self, check_interval_seconds: float = 60) -> Scheduler:
        """A Scheduler with the sweep registered on the configured cron expression."""
        scheduler = Scheduler(logger=self._logger, check_interval_seconds=check_interval_seconds)

        async def run_sweep() -> None:
            await self.sweep()

        scheduler.schedule("rotation-sweep", self._config.scheduler.sweep_cron, run_sweep)
        return scheduler

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        await self.build_scheduler().run(stop_event)

    # ─── Pool management ────────────────────────────────────────────

    def list_domains(self, kind: str, record_id: int) -> list[DomainEntry]:
        self._check_record_id(record_id)
        self.records.table_for(kind)
        with self.database.reader() as conn:
            return self.pool.list_domains(conn, kind, record_id)

    def list_all_domains(self) -> list[DomainEntry]:
        with self.database.reader() as conn:
            return self.pool.list_all(conn)

    def add_domain(
        self,
        kind: str,
        record_id: int,
        domain: str,
        now: Optional[int] = None,
    ) -> tuple[DomainEntry, PoolStats]:
        """
        Add a domain to a record's pool.

        Raises:
            ValidationError: Bad kind, id or domain
            RecordNotFoundError: The record does not exist
            DuplicateDomainError: The record already has the domain
        """
        self._check_record_id(record_id)
        canonical = self.validator.validate(domain).raise_for_error()
        now = self._now(now)
        with self.database.transaction() as conn:
            self.records.get(conn, kind, record_id)
            entry = self.pool.add(conn, kind, record_id, canonical)
            stats = self.pool.pool_stats(conn, kind, record_id, now)

        self._logger.info(
            COMPONENT,
            "Domain added",
            {"kind": kind, "record_id": record_id, "domain": canonical, "pool": str(stats)},
        )
        return entry, stats

    def remove_domain(
        self,
        kind: str,
        record_id: int,
        domain_id: int,
        now: Optional[int] = None,
    ) -> tuple[DomainEntry, PoolStats]:
        """
        Remove an idle domain from a record's pool.

        Raises:
            DomainNotFoundError, DomainInUseError, IsCurrentHostError
        """
        self._check_record_id(record_id)
        if domain_id <= 0:
            raise ValidationError(
                message=f"Invalid domain id: {domain_id}",
                details={"domain_id": domain_id},
                code="invalid_id",
            )
        now = self._now(now)
        with self.database.transaction() as conn:
            record = self.records.get(conn, kind, record_id)
            entry = self.pool.remove(conn, kind, record_id, domain_id, current_host=record.host)
            stats = self.pool.pool_stats(conn, kind, record_id, now)

        self._logger.info(
            COMPONENT,
            "Domain removed",
            {"kind": kind, "record_id": record_id, "domain": entry.domain, "pool": str(stats)},
        )
        return entry, stats

    # ─── Settings ───────────────────────────────────────────────────

    def set_interval(self, hours: int, now: Optional[int] = None) -> RotationConfig:
        """
        Change the rotation interval and move every record's next update to
        now + the new interval.
        """
        now = self._now(now)
        validate_interval(hours)
        next_update_time = now + hours * SECONDS_PER_HOUR
        with self.database.transaction() as conn:
            for kind in self.records.kinds:
                self.records.reschedule_all(conn, kind, next_update_time)

        updated = self.settings.set_interval(hours)
        self._logger.info(
            COMPONENT,
            "Update interval changed",
            {"hours": hours, "next_update_time": next_update_time},
        )
        return updated

    def set_port_range(self, port_min: int, port_max: int) -> RotationConfig:
        updated = self.settings.set_port_range(port_min, port_max)
        self._logger.info(COMPONENT, "Port range changed", {"port_min": port_min, "port_max": port_max})
        return updated

    # ─── Listings ───────────────────────────────────────────────────

    def list_records(self, now: Optional[int] = None) -> list[RecordSummary]:
        """Every record of every kind with its pool counts and phase."""
        now = self._now(now)
        summaries = []
        for kind in self.records.kinds:
            try:
                summaries.extend(self._summarize_kind(kind, now))
            except RotatorError as e:
                self._logger.log_error(COMPONENT, "Failed to list records", e, {"kind": kind})
        return summaries

    def _summarize_kind(self, kind: str, now: int) -> list[RecordSummary]:
        with self.database.reader() as conn:
            return [
                RecordSummary(
                    record=record,
                    pool=self.pool.pool_stats(conn, kind, record.id, now),
                    phase=self.coordinator.phase(record, now),
                )
                for record in self.records.list_records(conn, kind)
            ]

    @staticmethod
    def _check_record_id(record_id: int) -> None:
        if isinstance(record_id, bool) or not isinstance(record_id, int) or record_id <= 0:
            raise ValidationError(
                message=f"Invalid record id: {record_id}",
                details={"record_id": record_id},
                code="invalid_id",
            )
