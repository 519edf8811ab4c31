"""
Registry Observability

Structured logging, correlation IDs, and a tamper-evident audit trail for
administrative mutations.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                     IssuerRegistry                       │
    │  log.info("msg", issuer=x)     audit.record(...)         │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │            RegistryLogger / AuditTrail                   │
    │  correlation IDs, structured context, hash chaining      │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                  logging handlers                        │
    │        StructuredHandler (json) │ StreamHandler (text)   │
    └─────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from trustreg.core import canonical_digest
from trustreg.hardening import AtomicCounter

ROOT_LOGGER = "trustreg"

# Context variable for request-scoped correlation
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    component: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON, one object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                component=getattr(record, "component", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(
    level: str = "info",
    fmt: str = "json",
    stream: Any = None,
) -> logging.Logger:
    """
    Install a single handler on the package root logger.

    ``fmt`` is ``json`` (StructuredHandler) or ``text`` (plain StreamHandler).
    Calling again replaces the previous handler.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        if getattr(handler, "_trustreg_handler", False):
            root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    handler._trustreg_handler = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))
    return root


class RegistryLogger:
    """
    Structured logger for registry components.

    Wraps a stdlib logger under the ``trustreg`` hierarchy and attaches
    component, operation and context fields to every record so that
    StructuredHandler can render them.
    """

    def __init__(self, component: str):
        self.component = component
        self._logger = logging.getLogger(f"{ROOT_LOGGER}.{component}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Internal log method."""
        extra = {
            "component": self.component,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one on first use."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(component: str) -> RegistryLogger:
    """Get a logger for a registry component."""
    return RegistryLogger(component)


T = TypeVar("T")


def timed_operation(
    logger: RegistryLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class AuditOutcome(Enum):
    """Outcome of an audited mutation attempt."""
    SUCCESS = "success"
    DENIED = "denied"
    FAILURE = "failure"


@dataclass
class AuditRecord:
    """An audit trail entry."""
    record_id: str
    timestamp: str
    actor: str
    action: str
    resource_id: str
    outcome: AuditOutcome
    details: Dict[str, Any] = field(default_factory=dict)
    correlation_id: str = ""

    # Tamper evidence
    previous_digest: Optional[str] = None
    record_digest: str = ""

    def __post_init__(self):
        if not self.record_digest:
            self.record_digest = self.compute_digest()

    def compute_digest(self) -> str:
        content = {
            "record_id": self.record_id,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "action": self.action,
            "resource_id": self.resource_id,
            "outcome": self.outcome.value,
            "details": self.details,
            "previous_digest": self.previous_digest,
        }
        return canonical_digest(content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "action": self.action,
            "resource_id": self.resource_id,
            "outcome": self.outcome.value,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "previous_digest": self.previous_digest,
            "record_digest": self.record_digest,
        }


class AuditTrail:
    """
    Tamper-evident audit trail.

    Each record includes the digest of the previous record, making it
    possible to detect edits or removals anywhere in the chain.
    """

    def __init__(self, logger: Optional[RegistryLogger] = None):
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()
        self._counter = AtomicCounter(0)
        self._logger = logger or get_logger("audit")

    def record(
        self,
        actor: str,
        action: str,
        resource_id: str,
        outcome: AuditOutcome,
        **details: Any,
    ) -> AuditRecord:
        """Append a record to the chain."""
        with self._lock:
            number = self._counter.increment()
            previous = self._records[-1].record_digest if self._records else None
            entry = AuditRecord(
                record_id=f"audit-{number:012d}",
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=str(actor),
                action=action,
                resource_id=resource_id,
                outcome=outcome,
                details=details,
                correlation_id=correlation_id_var.get(),
                previous_digest=previous,
            )
            self._records.append(entry)

        self._logger.info(
            f"AUDIT: {action} on {resource_id or '-'} -> {outcome.value}",
            operation="audit",
            actor=entry.actor,
            record_digest=entry.record_digest,
        )
        return entry

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify the chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            for i, entry in enumerate(self._records):
                if entry.compute_digest() != entry.record_digest:
                    return (False, i)
                expected_prev = self._records[i - 1].record_digest if i > 0 else None
                if entry.previous_digest != expected_prev:
                    return (False, i)
            return (True, None)

    def records(
        self,
        actor: Optional[str] = None,
        outcome: Optional[AuditOutcome] = None,
        resource_id: Optional[str] = None,
    ) -> List[AuditRecord]:
        """Query records, oldest first."""
        with self._lock:
            found = list(self._records)
        if actor is not None:
            found = [r for r in found if r.actor == actor]
        if outcome is not None:
            found = [r for r in found if r.outcome == outcome]
        if resource_id is not None:
            found = [r for r in found if r.resource_id == resource_id]
        return found

    def export(self) -> List[Dict[str, Any]]:
        """Export all records as dicts."""
        with self._lock:
            return [r.to_dict() for r in self._records]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
