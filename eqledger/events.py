"""
EQLEDGER Event Infrastructure

Typed events emitted by ledger entry points, an in-memory bus for
subscribers and an append-only store holding each proxy's committed logs.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Ledger Events        Event Bus            Event Store                   │
    │  ├─ TransferSingle    ├─ Typed subs        ├─ Append-only                │
    │  ├─ TransferBatch     ├─ Priorities        ├─ One stream per proxy       │
    │  ├─ ApprovalForAll    ├─ Filters           └─ Replay                     │
    │  ├─ RoleGranted       └─ Error isolation                                 │
    │  ├─ RoleRevoked                                                          │
    │  ├─ RoleAdminChanged                                                     │
    │  ├─ Initialized                                                          │
    │  ├─ Upgraded                                                             │
    │  └─ Version                                                              │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Events are buffered for the duration of a call and only reach the bus and
the store once the call commits. A rejected call leaves no logs.

Usage
─────

    from eqledger.events import TransferSingle, get_event_bus

    bus = get_event_bus()

    @bus.subscribe(TransferSingle)
    def on_transfer(event: TransferSingle):
        print(event.args)
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
    Type,
)

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all ledger events.

    Events are immutable facts about a committed call. Metadata fields are
    auto-populated; subclasses declare their payload fields in log order.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    @property
    def args(self) -> Tuple[Any, ...]:
        """Payload fields in declaration order."""
        base = {f.name for f in fields(Event)}
        return tuple(getattr(self, f.name) for f in fields(self) if f.name not in base)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        """Serialize event to JSON for display/transport."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


# ════════════════════════════════════════════════════════════════════════════
# LEDGER EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class TransferSingle(Event):
    """Balance movement of one id. ``from_`` is zero on mint, ``to`` on burn."""
    operator: str = ""
    from_: str = ""
    to: str = ""
    id: int = 0
    value: int = 0


@dataclass
class TransferBatch(Event):
    """Balance movement of several ids in one call."""
    operator: str = ""
    from_: str = ""
    to: str = ""
    ids: Tuple[int, ...] = ()
    values: Tuple[int, ...] = ()


@dataclass
class ApprovalForAll(Event):
    account: str = ""
    operator: str = ""
    approved: bool = False


@dataclass
class RoleGranted(Event):
    role: str = ""
    account: str = ""
    sender: str = ""


@dataclass
class RoleRevoked(Event):
    role: str = ""
    account: str = ""
    sender: str = ""


@dataclass
class RoleAdminChanged(Event):
    role: str = ""
    previous_admin_role: str = ""
    new_admin_role: str = ""


@dataclass
class Initialized(Event):
    version: int = 0


@dataclass
class Upgraded(Event):
    implementation: str = ""


@dataclass
class Version(Event):
    """Current logic version; emitted on upgrade and on every version read."""
    value: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER TYPES
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
        super().__init__(f"Handler {handler.__name__} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Handlers run synchronously in priority order. A failing handler is
    counted and reported through ``on_error``; it never rolls back the
    call whose events it observes.

    Example:
        bus = EventBus()

        @bus.subscribe(RoleGranted, RoleRevoked)
        def audit_roles(event):
            print(f"Role event: {event.event_type}")
    """

    def __init__(
        self,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
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
            event_types: Event types to subscribe to (all events if omitted)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function
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
        """Publish an event to all matching subscribers."""
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
            error = EventHandlerError(event, handler, e)
            logger.warning("%s", error)
            if self._on_error:
                self._on_error(error)

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


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }


class EventStore:
    """
    Append-only event store.

    Each proxy address is a stream; a committed call appends its logs in
    emission order.
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def append(self, stream_id: str, events: List[Event]) -> List[EventRecord]:
        """Append events to a stream and return their records."""
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            current_version = len(stream)

            records = []
            for event in events:
                self._sequence_number += 1
                current_version += 1
                record = EventRecord(
                    sequence_number=self._sequence_number,
                    event=event,
                    stream_id=stream_id,
                    version=current_version,
                )
                self._events.append(record)
                stream.append(record)
                records.append(record)

            return records

    def read_stream(
        self,
        stream_id: str,
        event_type: Optional[Type[Event]] = None,
        from_version: int = 0,
    ) -> List[Event]:
        """Read events from a stream, optionally filtered by type."""
        with self._lock:
            stream = self._streams.get(stream_id, [])
            events = [r.event for r in stream[from_version:]]

        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        return events

    def get_stream_version(self, stream_id: str) -> int:
        """Get current version of a stream."""
        with self._lock:
            return len(self._streams.get(stream_id, []))

    @property
    def total_events(self) -> int:
        """Total number of events."""
        with self._lock:
            return len(self._events)


# ════════════════════════════════════════════════════════════════════════════
# GLOBAL INSTANCES
# ════════════════════════════════════════════════════════════════════════════


_event_bus: Optional[EventBus] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        with _event_bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


__all__ = [
    "Event",
    "TransferSingle",
    "TransferBatch",
    "ApprovalForAll",
    "RoleGranted",
    "RoleRevoked",
    "RoleAdminChanged",
    "Initialized",
    "Upgraded",
    "Version",
    "EventHandler",
    "EventHandlerRegistration",
    "EventHandlerError",
    "EventBus",
    "EventRecord",
    "EventStore",
    "get_event_bus",
]
