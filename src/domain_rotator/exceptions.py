"""
Exception classes for the domain rotator.

All exceptions inherit from RotatorError and carry a machine-readable code,
a human-readable message and optional structured details.
"""

from typing import Optional


class RotatorError(Exception):
    """Base exception for all domain rotator errors."""

    code = "rotator_error"

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: Optional[str] = None,
    ) -> None:
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(RotatorError):
    """Raised when caller input (kind, domain, interval, port range) is invalid."""

    code = "validation_error"


class ConfigError(RotatorError):
    """Raised when the configuration file cannot be read or written."""

    code = "config_error"


class RecordNotFoundError(RotatorError):
    """Raised when no resource record exists for (kind, id)."""

    code = "record_not_found"


class NoDistinctPortError(RotatorError):
    """Raised when the port range holds no port other than the excluded one."""

    code = "no_distinct_port"


class NoAvailableDomainError(RotatorError):
    """Raised when every pool entry is in use or cooling down."""

    code = "no_available_domain"


class DuplicateDomainError(RotatorError):
    """Raised when a domain is already registered for the same record."""

    code = "duplicate_domain"


class DomainNotFoundError(RotatorError):
    """Raised when a domain entry does not exist in the record's pool."""

    code = "domain_not_found"


class DomainInUseError(RotatorError):
    """Raised when removing a domain entry that is currently in use."""

    code = "domain_in_use"


class IsCurrentHostError(RotatorError):
    """Raised when removing the domain the record is currently served from."""

    code = "is_current_host"


class StoreError(RotatorError):
    """Raised when the underlying SQLite store fails (I/O, constraint, commit)."""

    code = "store_error"
