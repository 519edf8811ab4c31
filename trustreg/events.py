"""
Registry Event Infrastructure

Typed notifications emitted by the trusted issuers registry and the
in-process bus that delivers them to observers.

Design Principles
─────────────────

    Immutable Events: Events are facts about a committed mutation.
    They are published only after the registry state has changed.

    Ordering: Events are published in the same total order as the
    mutations that produced them.

    Isolation: A failing subscriber never undoes the mutation and never
    prevents delivery to the other subscribers.

Usage
─────

    from trustreg.events import EventBus, TrustedIssuerAdded

    bus = EventBus()

    @bus.subscribe(TrustedIssuerAdded)
    def on_added(event: TrustedIssuerAdded):
        print(f"{event.issuer} trusted for {event.claim_topics}")

    registry = IssuerRegistry(owner="did:example:admin", event_bus=bus)
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type

from trustreg.core import canonical_digest

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all registry events.

    Each event has a unique ID, a UTC timestamp, and optional correlation
    metadata linking it to the request that caused it.
    """

    # Metadata fields (auto-populated)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    @property
    def timestamp(self) -> datetime:
        """Get timestamp as datetime."""
        return datetime.fromisoformat(self.event_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize event from dictionary."""
        data = data.copy()
        data.pop("event_type", None)
        return cls(**data)

    def to_json(self) -> str:
        """Serialize event to JSON for display/transport (not for digest computation)."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of the event payload (metadata excluded)."""
        payload = {
            k: v for k, v in self.to_dict().items()
            if k not in ("event_id", "event_timestamp", "correlation_id", "metadata")
        }
        return canonical_digest(payload)


# ════════════════════════════════════════════════════════════════════════════
# REGISTRY EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class TrustedIssuerAdded(Event):
    """Emitted when an issuer is registered with its claim topics."""
    issuer: str = ""
    claim_topics: Tuple[int, ...] = ()


@dataclass
class TrustedIssuerRemoved(Event):
    """Emitted when an issuer is removed from the registry."""
    issuer: str = ""


@dataclass
class ClaimTopicsUpdated(Event):
    """Emitted when an issuer's claim topics are replaced."""
    issuer: str = ""
    claim_topics: Tuple[int, ...] = ()


@dataclass
class OwnershipTransferred(Event):
    """Emitted when registry ownership moves to a new principal."""
    previous_owner: str = ""
    new_owner: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


def _log_handler_error(error: EventHandlerError) -> None:
    logger.error(str(error), exc_info=error.cause)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Supports typed subscriptions, filters and priorities. Thread-safe for
    concurrent publishing and subscribing. Handlers run synchronously on the
    publishing thread.

    Example:
        bus = EventBus()

        @bus.subscribe(TrustedIssuerAdded, TrustedIssuerRemoved)
        def handle_membership(event):
            print(f"Membership event: {event.event_type}")

        bus.publish(TrustedIssuerAdded(issuer="did:example:kyc", claim_topics=(1,)))
    """

    def __init__(
        self,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error or _log_handler_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Args:
            event_types: Event types to subscribe to (all events when empty)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function

        Example:
            @bus.subscribe(ClaimTopicsUpdated, priority=10)
            def handle_high_priority(event):
                pass
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Unsubscribe a handler."""
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers in priority order.

        Handler exceptions are routed to ``on_error`` and never propagate
        to the publisher.
        """
        with self._lock:
            self._published_count += 1
            handlers_to_call = []

            for registration in self._handlers:
                if not any(isinstance(event, t) for t in registration.event_types):
                    continue
                if registration.filter_func and not registration.filter_func(event):
                    continue
                handlers_to_call.append(registration)

        # Call handlers (outside lock)
        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        """Call a handler with error handling."""
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            self._on_error(EventHandlerError(event, handler, e))

    @property
    def metrics(self) -> Dict[str, int]:
        """Get event bus metrics."""
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


class EventRecorder:
    """Subscriber that keeps every event it sees, in delivery order."""

    def __init__(self, bus: EventBus, *event_types: Type[Event]):
        self.events: List[Event] = []
        self._lock = threading.Lock()
        bus.subscribe(*event_types)(self._record)

    def _record(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: Type[Event]) -> List[Event]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]
