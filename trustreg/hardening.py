"""
Validation and Hardening Module

Error taxonomy, input validation with sanitization, and the small
thread-safety primitives shared by the registry.

Security Model:
    - All inputs are untrusted until validated
    - All state mutations are atomic: validate everything, then apply
    - All failures are reported synchronously, never retried
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, List, Optional

from trustreg.identity import (
    PrincipalKind,
    classify_principal,
    is_valid_did_key,
    is_zero_address,
    normalize_principal,
)


# =============================================================================
# ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """A single field-level validation failure."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class RegistryError(Exception):
    """Base class for every failure the registry reports."""
    code = "registry_error"


class Unauthorized(RegistryError):
    """Caller lacks the owner capability for a mutating call."""
    code = "unauthorized"

    def __init__(self, caller: Any, action: str):
        self.caller = caller
        self.action = action
        super().__init__(f"{caller!r} is not authorized to {action}")


class AlreadyExists(RegistryError):
    """Add on an issuer that is already registered."""
    code = "already_exists"

    def __init__(self, issuer: str):
        self.issuer = issuer
        super().__init__(f"Trusted issuer already exists: {issuer}")


class NotFound(RegistryError):
    """Remove, update or lookup on an issuer that is not registered."""
    code = "not_found"

    def __init__(self, issuer: str):
        self.issuer = issuer
        super().__init__(f"Trusted issuer not found: {issuer}")


class InvalidArgument(RegistryError):
    """One or more arguments failed validation."""
    code = "invalid_argument"

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")

    @classmethod
    def for_field(cls, field: str, message: str, value: Any = None) -> "InvalidArgument":
        return cls([ValidationError(field, message, value)])


class CapacityExceeded(InvalidArgument):
    """Issuer or topic limit reached."""
    code = "capacity_exceeded"


class SnapshotError(RegistryError):
    """Snapshot document unreadable or structurally invalid."""
    code = "snapshot_error"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise InvalidArgument if validation failed."""
        if not self.is_valid:
            raise InvalidArgument(self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value or raise InvalidArgument."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    # Patterns
    PRINCIPAL_PATTERN = re.compile(r"^[^\s\x00-\x1f\x7f]+$")

    # Limits
    MAX_PRINCIPAL_LENGTH = 256
    MAX_CLAIM_TOPIC = 2 ** 256 - 1

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: int = 4096,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        """Validate a string value."""
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        # Sanitize: strip whitespace and null bytes
        sanitized = value.strip().replace("\x00", "")

        if len(sanitized) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if len(sanitized) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if pattern and sanitized and not pattern.match(sanitized):
            errors.append(ValidationError(field_name, "Does not match required pattern", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(sanitized)

    @classmethod
    def validate_principal(cls, value: Any, field_name: str = "principal") -> ValidationResult:
        """Validate an issuer reference or owner principal.

        Any non-empty token is accepted. Addresses are lowercased, the zero
        address is refused, and `did:key` values must decode to an Ed25519 key.
        """
        if value is None:
            return ValidationResult.failure([ValidationError(field_name, "Must not be null", value)])

        result = cls.validate_string(
            value, field_name,
            min_length=1, max_length=cls.MAX_PRINCIPAL_LENGTH,
            pattern=cls.PRINCIPAL_PATTERN,
        )
        if not result.is_valid:
            return result

        sanitized = normalize_principal(result.sanitized_value)
        if is_zero_address(sanitized):
            return ValidationResult.failure([
                ValidationError(field_name, "Zero address is not a valid principal", value)
            ])
        if classify_principal(sanitized) is PrincipalKind.DID_KEY and not is_valid_did_key(sanitized):
            return ValidationResult.failure([
                ValidationError(field_name, "Malformed did:key identifier", value)
            ])

        return ValidationResult.success(sanitized)

    @classmethod
    def validate_issuer(cls, value: Any) -> ValidationResult:
        return cls.validate_principal(value, "issuer")

    @classmethod
    def validate_claim_topic(cls, value: Any, field_name: str = "claim_topic") -> ValidationResult:
        """Validate a claim topic (unsigned 256-bit integer)."""
        # bool is an int subclass; True is not a topic
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected unsigned integer, got {type(value).__name__}", value)
            ])
        if value < 0 or value > cls.MAX_CLAIM_TOPIC:
            return ValidationResult.failure([
                ValidationError(field_name, "Out of range for uint256", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_claim_topics(cls, values: Any, field_name: str = "claim_topics") -> ValidationResult:
        """Validate a topic collection, deduplicating in first-seen order."""
        if values is None or isinstance(values, (str, bytes, dict)) or not isinstance(values, Iterable):
            return ValidationResult.failure([
                ValidationError(field_name, "Expected a sequence of claim topics", values)
            ])

        errors: List[ValidationError] = []
        topics: List[int] = []
        seen = set()
        for i, raw in enumerate(values):
            result = cls.validate_claim_topic(raw, f"{field_name}[{i}]")
            if not result.is_valid:
                errors.extend(result.errors)
                continue
            if result.sanitized_value not in seen:
                seen.add(result.sanitized_value)
                topics.append(result.sanitized_value)

        if errors:
            return ValidationResult.failure(errors)
        if not topics:
            return ValidationResult.failure([
                ValidationError(field_name, "At least one claim topic is required", values)
            ])
        return ValidationResult.success(tuple(topics))


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value
