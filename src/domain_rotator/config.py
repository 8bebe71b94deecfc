"""
Configuration dataclasses for the domain rotator.

This module defines the configuration structures used throughout the system:
database location, managed record kinds, rotation parameters, retry and
scheduling behaviour, credentials, logging and bootstrap seeding. It also
provides RuntimeSettings, the single owned holder for the rotation
parameters that operators may change while the process is running.
"""

import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional

from .exceptions import ValidationError

DEFAULT_COOLDOWN_SECONDS = 3 * 3600
SECONDS_PER_HOUR = 3600


@dataclass
class DatabaseConfig:
    """SQLite database settings."""

    path: Path
    busy_timeout_ms: int = 5000


@dataclass
class KindConfig:
    """Maps an endpoint kind to the external table holding its records."""

    kind: str
    table: str


@dataclass(frozen=True)
class RotationConfig:
    """Rotation parameters. Immutable; replaced as a whole on change."""

    update_interval_hours: int = 24
    port_min: int = 10000
    port_max: int = 60000
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS

    @property
    def update_interval_seconds(self) -> int:
        return self.update_interval_hours * SECONDS_PER_HOUR


@dataclass
class RetryConfig:
    """Retry behavior for scheduled rotations."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.0
    max_delay_seconds: float = 0.0


@dataclass
class SchedulerConfig:
    """Sweep cadence as a cron expression."""

    sweep_cron: str = "*/5 * * * *"


@dataclass
class AuthConfig:
    """Panel credentials. Carried for the surrounding application only."""

    username: str = "admin"
    password: str = ""


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SeedConfig:
    """Domains seeded into every record's pool when the pool is empty."""

    domains: list[str] = field(default_factory=list)
    sample_record_id: int = 4
    sample_port: int = 8080


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    database: DatabaseConfig
    kinds: list[KindConfig]
    rotation: RotationConfig = field(default_factory=RotationConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    seed: SeedConfig = field(default_factory=SeedConfig)


def validate_interval(hours: int) -> None:
    """Reject non-positive rotation intervals."""
    if isinstance(hours, bool) or not isinstance(hours, int) or hours <= 0:
        raise ValidationError(
            message=f"Invalid update interval: {hours}",
            details={"hours": hours},
            code="invalid_interval",
        )


def validate_port_range(port_min: int, port_max: int) -> None:
    """Require 0 < port_min < port_max <= 65535."""
    if port_min <= 0:
        raise ValidationError(
            message=f"Invalid minimum port: {port_min}",
            details={"port_min": port_min, "port_max": port_max},
            code="invalid_port_range",
        )
    if port_max <= port_min or port_max > 65535:
        raise ValidationError(
            message=f"Invalid maximum port: {port_max}",
            details={"port_min": port_min, "port_max": port_max},
            code="invalid_port_range",
        )


class RuntimeSettings:
    """
    Owned, thread-safe holder for the live rotation parameters.

    Readers take an immutable RotationConfig snapshot; writers go through
    the explicit setters, which validate, swap the snapshot and notify the
    optional change listener (used by the CLI to persist the config file).
    """

    def __init__(
        self,
        rotation: RotationConfig,
        on_change: Optional[Callable[[RotationConfig], None]] = None,
    ) -> None:
        validate_interval(rotation.update_interval_hours)
        validate_port_range(rotation.port_min, rotation.port_max)
        self._lock = threading.Lock()
        self._rotation = rotation
        self._on_change = on_change

    def snapshot(self) -> RotationConfig:
        """Return the current rotation parameters."""
        with self._lock:
            return self._rotation

    def set_interval(self, hours: int) -> RotationConfig:
        validate_interval(hours)
        return self._update(update_interval_hours=hours)

    def set_port_range(self, port_min: int, port_max: int) -> RotationConfig:
        validate_port_range(port_min, port_max)
        return self._update(port_min=port_min, port_max=port_max)

    def _update(self, **changes) -> RotationConfig:
        with self._lock:
            self._rotation = replace(self._rotation, **changes)
            current = self._rotation
        if self._on_change is not None:
            self._on_change(current)
        return current
