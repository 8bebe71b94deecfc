"""
Domain Rotator - port and domain rotation for managed proxy endpoints.

This package periodically and on demand moves each managed endpoint record to
a fresh port and to the least recently used domain of its own pool, with a
cooldown before a released domain may be reassigned. Every rotation is a
single atomic unit of work against the database.
"""

__version__ = "0.1.0"
__author__ = "Domain Rotator Team"

from domain_rotator.exceptions import (
    RotatorError,
    ValidationError,
    ConfigError,
    RecordNotFoundError,
    NoDistinctPortError,
    NoAvailableDomainError,
    DuplicateDomainError,
    DomainNotFoundError,
    DomainInUseError,
    IsCurrentHostError,
    StoreError,
)
from domain_rotator.enums import (
    LogLevel,
    RotationTrigger,
    RotationPhase,
    DomainValidationErrorCode,
)
from domain_rotator.config import (
    DatabaseConfig,
    KindConfig,
    RotationConfig,
    RetryConfig,
    SchedulerConfig,
    AuthConfig,
    LoggingConfig,
    SeedConfig,
    SystemConfig,
    RuntimeSettings,
)
from domain_rotator.models import (
    ResourceRecord,
    DomainEntry,
    PoolStats,
    RotationOutcome,
    RecordSummary,
)
from domain_rotator.domain_validator import (
    DomainValidator,
    DomainValidationResult,
)
from domain_rotator.audit_logger import (
    AuditLogger,
    NullLogger,
    LogEntry,
)
from domain_rotator.database import Database
from domain_rotator.record_store import ResourceRecordStore
from domain_rotator.domain_pool import DomainPoolStore
from domain_rotator.port_allocator import PortAllocator
from domain_rotator.retry_manager import (
    RetryManager,
    RetryResult,
)
from domain_rotator.coordinator import RotationCoordinator
from domain_rotator.scheduler import (
    Scheduler,
    CronSchedule,
    CronField,
    CronParser,
    CronParseError,
    ScheduledTask,
    RotationSweeper,
    SweepReport,
)
from domain_rotator.service import RotatorService
from domain_rotator.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)
from domain_rotator.self_test import (
    SelfTest,
    SelfTestResult,
    ConfigValidationResult,
    run_self_test,
)

__all__ = [
    # Exceptions
    "RotatorError",
    "ValidationError",
    "ConfigError",
    "RecordNotFoundError",
    "NoDistinctPortError",
    "NoAvailableDomainError",
    "DuplicateDomainError",
    "DomainNotFoundError",
    "DomainInUseError",
    "IsCurrentHostError",
    "StoreError",
    # Enums
    "LogLevel",
    "RotationTrigger",
    "RotationPhase",
    "DomainValidationErrorCode",
    # Configuration
    "DatabaseConfig",
    "KindConfig",
    "RotationConfig",
    "RetryConfig",
    "SchedulerConfig",
    "AuthConfig",
    "LoggingConfig",
    "SeedConfig",
    "SystemConfig",
    "RuntimeSettings",
    # Models
    "ResourceRecord",
    "DomainEntry",
    "PoolStats",
    "RotationOutcome",
    "RecordSummary",
    # Domain Validator
    "DomainValidator",
    "DomainValidationResult",
    # Audit Logger
    "AuditLogger",
    "NullLogger",
    "LogEntry",
    # Stores
    "Database",
    "ResourceRecordStore",
    "DomainPoolStore",
    # Rotation
    "PortAllocator",
    "RetryManager",
    "RetryResult",
    "RotationCoordinator",
    # Scheduler
    "Scheduler",
    "CronSchedule",
    "CronField",
    "CronParser",
    "CronParseError",
    "ScheduledTask",
    "RotationSweeper",
    "SweepReport",
    # Service
    "RotatorService",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "ConfigValidationResult",
    "run_self_test",
]
