"""
Data models for the domain rotator.

This module defines the resource records whose identity is rotated, the
domain pool entries they draw from, and the outcome of a rotation.
"""

from dataclasses import dataclass
from typing import Optional

from .enums import RotationPhase, RotationTrigger

STATUS_SUCCESS = "success"
STATUS_FAILED_PREFIX = "failed: "


@dataclass
class ResourceRecord:
    """A managed endpoint, stored in the external table of its kind."""

    kind: str
    id: int
    port: str  # Display form
    numeric_port: int  # server_port column
    host: str  # Currently assigned domain, may be empty
    next_update_time: int = 0  # Unix seconds, 0 = due now
    last_update_status: str = ""
    name: str = ""
    show: bool = True

    def is_due(self, now: int) -> bool:
        return self.next_update_time <= now


@dataclass
class DomainEntry:
    """A candidate domain in one record's pool."""

    id: int
    kind: str
    owner_id: int
    domain: str
    in_use: bool = False
    order: int = 0
    last_used_time: int = 0  # Unix seconds, 0 = never used

    def is_eligible(self, now: int, cooldown_seconds: int) -> bool:
        """Unused and either never used or rested for the full cooldown."""
        if self.in_use:
            return False
        return self.last_used_time == 0 or now - self.last_used_time >= cooldown_seconds

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "server_table": self.kind,
            "server_id": self.owner_id,
            "domain": self.domain,
            "in_use": int(self.in_use),
            "order": self.order,
            "last_used_time": self.last_used_time,
        }


@dataclass
class PoolStats:
    """Domain counts for one record's pool."""

    total: int
    available: int

    def __str__(self) -> str:
        return f"{self.total}/{self.available}"


@dataclass
class RotationOutcome:
    """Result of one rotation attempt. Never persisted as an entity."""

    kind: str
    record_id: int
    trigger: RotationTrigger
    success: bool
    port: Optional[int] = None
    host: Optional[str] = None
    next_update_time: Optional[int] = None
    error: Optional[Exception] = None
    attempts: int = 1

    @property
    def status_text(self) -> str:
        """The last_update_status value recorded for this outcome."""
        if self.success:
            return STATUS_SUCCESS
        reason = getattr(self.error, "message", None) or str(self.error)
        return f"{STATUS_FAILED_PREFIX}{reason}"


@dataclass
class RecordSummary:
    """A record with its pool counts and rotation phase, for listings."""

    record: ResourceRecord
    pool: PoolStats
    phase: RotationPhase
