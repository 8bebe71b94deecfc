"""
Domain validation and normalization for pool entries.

Operator-supplied domains are stored in canonical form (lowercase, IDNA
A-labels for international names) so the uniqueness of (kind, record,
domain) cannot be bypassed with case or Unicode variants.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from .enums import DomainValidationErrorCode
from .exceptions import ValidationError

# Control characters, whitespace, URL/port delimiters and other symbols
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~_]'
)

_LABEL_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

MAX_DOMAIN_LENGTH = 253


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error_code: Optional[DomainValidationErrorCode] = None
    message: str = ""

    def raise_for_error(self) -> str:
        """
        Return the canonical domain or raise the validation failure.

        Raises:
            ValidationError: If the domain was rejected
        """
        if not self.valid:
            raise ValidationError(
                message=self.message,
                details={"error_code": self.error_code.value if self.error_code else None},
                code="invalid_domain",
            )
        return self.canonical_domain


class DomainValidator:
    """
    Validates and normalizes domain names for the pool.

    Handles:
    - Conversion to lowercase canonical form
    - IDNA encoding for international characters
    - Rejection of forbidden characters and malformed labels
    - Optional restriction to a set of TLDs
    """

    def __init__(self, allowed_tlds: Optional[list[str]] = None) -> None:
        """
        Args:
            allowed_tlds: TLDs to accept (e.g. ['com', 'net']); None accepts any
        """
        self._allowed_tlds = (
            {tld.lower().lstrip(".") for tld in allowed_tlds} if allowed_tlds else None
        )

    def validate(self, raw_domain: str) -> DomainValidationResult:
        # Only surrounding spaces are trimmed; tabs and control characters are rejected
        if not raw_domain or not raw_domain.strip(" "):
            return self._reject(DomainValidationErrorCode.EMPTY_INPUT, "Domain must not be empty")

        domain = raw_domain.strip(" ").rstrip(".")

        if FORBIDDEN_CHARS_PATTERN.search(domain):
            found = sorted(set(FORBIDDEN_CHARS_PATTERN.findall(domain)))
            return self._reject(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                f"Domain contains forbidden characters: {found}",
            )

        try:
            canonical = self.normalize_to_canonical(domain)
        except ValidationError as e:
            return self._reject(DomainValidationErrorCode.IDNA_ERROR, e.message)

        labels = canonical.split(".")
        if len(labels) < 2 or len(canonical) > MAX_DOMAIN_LENGTH:
            return self._reject(
                DomainValidationErrorCode.INVALID_LABEL,
                f"Not a fully qualified domain name: {canonical}",
            )
        for label in labels:
            if not _LABEL_PATTERN.match(label):
                return self._reject(
                    DomainValidationErrorCode.INVALID_LABEL,
                    f"Invalid label {label!r} in {canonical}",
                )

        tld = labels[-1]
        if self._allowed_tlds is not None and tld not in self._allowed_tlds:
            return self._reject(
                DomainValidationErrorCode.INVALID_TLD,
                f"TLD '{tld}' is not in the configured allowed list",
            )

        return DomainValidationResult(valid=True, canonical_domain=canonical)

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Lowercase, and IDNA-encode names with non-ASCII characters.

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower()
        if all(ord(c) < 128 for c in domain_lower):
            return domain_lower

        try:
            return idna.encode(domain_lower, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                message=f"IDNA encoding failed: {e}",
                details={"domain": domain},
                code=DomainValidationErrorCode.IDNA_ERROR.value,
            ) from e

    @staticmethod
    def _reject(code: DomainValidationErrorCode, message: str) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_domain=None,
            error_code=code,
            message=message,
        )
