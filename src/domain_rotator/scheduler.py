"""
Scheduler module for the domain rotator.

Two layers:
- CronParser / Scheduler: a minute-resolution cron loop that fires async
  callbacks (the sweep runs on "*/5 * * * *" by default).
- RotationSweeper: one sweep over every kind, rotating each due record with
  bounded retry and recording the outcome on the record.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger, NullLogger
from .config import RuntimeSettings
from .coordinator import RotationCoordinator
from .database import Database
from .enums import RotationTrigger
from .exceptions import RotatorError
from .models import ResourceRecord, RotationOutcome
from .record_store import ResourceRecordStore
from .retry_manager import RetryManager

COMPONENT = "scheduler"


class CronParseError(Exception):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, message: str, expression: str) -> None:
        self.message = message
        self.expression = expression
        super().__init__(f"{message}: '{expression}'")


@dataclass
class CronField:
    """Allowed values of one cron field."""

    values: set[int]
    min_value: int
    max_value: int

    @property
    def is_wildcard(self) -> bool:
        return self.values == set(range(self.min_value, self.max_value + 1))

    def matches(self, value: int) -> bool:
        return value in self.values


@dataclass
class CronSchedule:
    """A parsed five-field cron schedule."""

    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField
    original_expression: str

    def matches(self, dt: datetime) -> bool:
        """Check if a datetime (minute precision) matches this schedule."""
        if not (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.month.matches(dt.month)
        ):
            return False

        # Standard cron: when both day fields are restricted, either may match
        dom_match = self.day_of_month.matches(dt.day)
        dow_match = self.day_of_week.matches(dt.weekday())
        if self.day_of_month.is_wildcard and self.day_of_week.is_wildcard:
            return True
        if self.day_of_month.is_wildcard:
            return dow_match
        if self.day_of_week.is_wildcard:
            return dom_match
        return dom_match or dow_match


class CronParser:
    """Parser for five-field cron expressions (an optional leading seconds field is ignored)."""

    # (min, max, name); day_of_week uses Python's weekday(), 0 = Monday
    FIELD_DEFS = [
        (0, 59, "minute"),
        (0, 23, "hour"),
        (1, 31, "day_of_month"),
        (1, 12, "month"),
        (0, 6, "day_of_week"),
    ]

    NAMES = {
        "month": {
            "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
            "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
        },
        "day_of_week": {
            "mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6,
        },
    }

    def parse(self, expression: str) -> CronSchedule:
        """
        Parse a cron expression into a CronSchedule.

        Supports '*', lists ('1,5'), ranges ('1-5'), steps ('*/5', '0-30/10')
        and month / weekday names.

        Raises:
            CronParseError: If the expression is invalid
        """
        expression = expression.strip()
        if not expression:
            raise CronParseError("Empty cron expression", expression)

        parts = expression.split()
        if len(parts) == 6:
            parts = parts[1:]
        elif len(parts) != 5:
            raise CronParseError(
                f"Invalid number of fields (expected 5 or 6, got {len(parts)})",
                expression,
            )

        fields = []
        for text, (low, high, name) in zip(parts, self.FIELD_DEFS):
            try:
                fields.append(self._parse_field(text, low, high, name))
            except ValueError as e:
                raise CronParseError(f"Invalid {name} field: {e}", expression) from e

        return CronSchedule(*fields, original_expression=expression)

    def _parse_field(self, text: str, low: int, high: int, name: str) -> CronField:
        text = text.lower()
        for label, number in self.NAMES.get(name, {}).items():
            text = text.replace(label, str(number))

        values: set[int] = set()
        for part in filter(None, (p.strip() for p in text.split(","))):
            step = 1
            if "/" in part:
                part, step_text = part.split("/", 1)
                if not step_text.isdigit() or int(step_text) < 1:
                    raise ValueError(f"Invalid step value: {step_text}")
                step = int(step_text)

            if part == "*":
                start, end = low, high
            elif "-" in part:
                start_text, end_text = part.split("-", 1)
                start, end = self._to_int(start_text), self._to_int(end_text)
                if start > end:
                    raise ValueError(f"Range start {start} > end {end}")
            else:
                start = end = self._to_int(part)
                if step != 1:
                    end = high

            for bound in (start, end):
                if bound < low or bound > high:
                    raise ValueError(f"Value {bound} out of bounds [{low}-{high}]")
            values.update(range(start, end + 1, step))

        if not values:
            raise ValueError("No values parsed from field")
        return CronField(values=values, min_value=low, max_value=high)

    @staticmethod
    def _to_int(text: str) -> int:
        try:
            return int(text)
        except ValueError:
            raise ValueError(f"Invalid value: {text}") from None


@dataclass
class ScheduledTask:
    """A named callback with its schedule."""

    name: str
    schedule: CronSchedule
    callback: Callable[[], Awaitable[None]]
    last_run: Optional[datetime] = None
    enabled: bool = True


class Scheduler:
    """Cron loop that fires each task at most once per matching minute."""

    def __init__(
        self,
        logger: Optional[AuditLogger] = None,
        check_interval_seconds: float = 60,
    ) -> None:
        self._parser = CronParser()
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._check_interval_seconds = check_interval_seconds
        self._logger = logger or NullLogger()

    def schedule(
        self,
        name: str,
        cron_expression: str,
        callback: Callable[[], Awaitable[None]],
    ) -> CronSchedule:
        """
        Raises:
            CronParseError: If the cron expression is invalid
            ValueError: If a task with the same name already exists
        """
        if name in self._tasks:
            raise ValueError(f"Task '{name}' already exists")

        schedule = self._parser.parse(cron_expression)
        self._tasks[name] = ScheduledTask(name=name, schedule=schedule, callback=callback)
        return schedule

    def unschedule(self, name: str) -> bool:
        return self._tasks.pop(name, None) is not None

    def get_task(self, name: str) -> Optional[ScheduledTask]:
        return self._tasks.get(name)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def run_pending(self, now: Optional[datetime] = None) -> list[str]:
        """
        Fire every enabled task whose schedule matches now's minute.

        Returns:
            Names of the tasks that ran
        """
        minute = (now or datetime.now()).replace(second=0, microsecond=0)
        ran = []
        for task in list(self._tasks.values()):
            if not task.enabled or not task.schedule.matches(minute):
                continue
            if task.last_run is not None and task.last_run >= minute:
                continue

            task.last_run = minute
            ran.append(task.name)
            try:
                await task.callback()
            except Exception as e:
                # A failing task must not stop the loop
                self._logger.log_error(
                    COMPONENT, "Scheduled task failed", e, {"task": task.name}
                )
        return ran

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run until stop() is called or stop_event is set."""
        self._running = True
        self._logger.info(
            COMPONENT,
            "Scheduler started",
            {"tasks": {t.name: t.schedule.original_expression for t in self._tasks.values()}},
        )

        while self._running:
            await self.run_pending()

            if stop_event is not None:
                try:
                    await asyncio.wait_for(stop_event.wait(), self._check_interval_seconds)
                    break
                except asyncio.TimeoutError:
                    continue
            await asyncio.sleep(self._check_interval_seconds)

        self._running = False
        self._logger.info(COMPONENT, "Scheduler stopped")

    def stop(self) -> None:
        self._running = False

    def is_running(self) -> bool:
        return self._running


@dataclass
class SweepReport:
    """Outcome of one sweep over all kinds."""

    now: int
    outcomes: list[RotationOutcome] = field(default_factory=list)
    kind_errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


class RotationSweeper:
    """
    Rotates every due record of every kind.

    Each due record gets up to RetryConfig.max_attempts rotations. On
    success the record's status becomes "success". When all attempts fail
    the status becomes "failed: <reason>" and the next due time is pushed
    a full interval ahead, so a record that keeps failing is not retried on
    every sweep.
    """

    def __init__(
        self,
        database: Database,
        records: ResourceRecordStore,
        coordinator: RotationCoordinator,
        retry_manager: RetryManager,
        settings: RuntimeSettings,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._database = database
        self._records = records
        self._coordinator = coordinator
        self._retry = retry_manager
        self._settings = settings
        self._logger = logger or NullLogger()

    async def sweep(self, now: Optional[int] = None) -> SweepReport:
        if now is None:
            now = int(time.time())
        report = SweepReport(now=now)
        self._logger.debug(COMPONENT, "Sweep started", {"now": now})

        for kind in self._records.kinds:
            try:
                due = await asyncio.to_thread(self._list_due, kind, now)
            except RotatorError as e:
                report.kind_errors[kind] = e.message
                self._logger.log_error(COMPONENT, "Failed to list due records", e, {"kind": kind})
                continue

            for record in due:
                report.outcomes.append(await self._rotate_record(record, now))

        self._logger.info(
            COMPONENT,
            "Sweep finished",
            {
                "now": now,
                "rotated": report.succeeded,
                "failed": report.failed,
                "kind_errors": report.kind_errors,
            },
        )
        return report

    async def _rotate_record(self, record: ResourceRecord, now: int) -> RotationOutcome:
        context = {"kind": record.kind, "record_id": record.id}

        def on_failure(attempt: int, error: Exception) -> None:
            self._logger.warn(
                COMPONENT,
                "Rotation attempt failed",
                {**context, "attempt": attempt, "error": str(error)},
            )

        result = await self._retry.execute_with_retry(
            lambda: self._coordinator.rotate(
                record.kind, record.id, now, bump_order_on_success=True
            ),
            on_failure=on_failure,
        )

        if result.success:
            outcome = result.result
            outcome.attempts = result.attempts
            await self._record_status(outcome)
            return outcome

        outcome = RotationOutcome(
            kind=record.kind,
            record_id=record.id,
            trigger=RotationTrigger.SCHEDULED,
            success=False,
            error=result.last_error,
            attempts=result.attempts,
        )
        self._logger.log_error(
            COMPONENT,
            "Rotation failed after all attempts",
            result.last_error,
            {**context, "attempts": result.attempts},
        )
        await self._record_status(
            outcome,
            next_update_time=now + self._settings.snapshot().update_interval_seconds,
        )
        return outcome

    async def _record_status(
        self,
        outcome: RotationOutcome,
        next_update_time: Optional[int] = None,
    ) -> None:
        try:
            await self._coordinator.write_status(
                outcome.kind, outcome.record_id, outcome.status_text, next_update_time
            )
        except RotatorError as e:
            # The rotation itself already committed or rolled back
            self._logger.log_error(
                COMPONENT,
                "Failed to record rotation status",
                e,
                {"kind": outcome.kind, "record_id": outcome.record_id},
            )

    def _list_due(self, kind: str, now: int) -> list[ResourceRecord]:
        with self._database.reader() as conn:
            return self._records.list_due(conn, kind, now)
