"""
Enumeration types for the domain rotator.

These enums provide type-safe constants for log levels, rotation triggers,
record phases and validation error codes.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class RotationTrigger(Enum):
    """What started a rotation."""

    SCHEDULED = "scheduled"
    ON_DEMAND = "on_demand"


class RotationPhase(Enum):
    """Rotation lifecycle of a single resource record."""

    DUE = "due"
    ROTATING = "rotating"
    ROTATED = "rotated"
    FAILED = "failed"


class DomainValidationErrorCode(Enum):
    """Error codes for domain validation failures."""

    FORBIDDEN_CHARS = "forbidden_chars"
    INVALID_TLD = "invalid_tld"
    IDNA_ERROR = "idna_error"
    EMPTY_INPUT = "empty_input"
    INVALID_LABEL = "invalid_label"
