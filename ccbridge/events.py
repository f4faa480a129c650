"""
Bridge Event Infrastructure

Typed events, a per-ledger append-only event log, and an in-process event
bus for subscribers that live outside the ledger (monitoring, lifecycle
tracking, recovery tooling).

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Ledger EventLog                     EventBus                            │
    │  ├─ Append-only, per ledger          ├─ Typed pub/sub                    │
    │  ├─ Rolled back with the             ├─ Published only after the         │
    │  │  invocation that emitted          │  emitting invocation commits      │
    │  └─ Queryable by type/filter         └─ Priorities and filters           │
    │                                                                          │
    │  Protocol Events                     Registry / Admin Events             │
    │  ├─ Sent                             ├─ AssetMinted, AssetBurned         │
    │  └─ Received                         ├─ Approval, ApprovalForAll         │
    │                                      └─ MinterChanged, PeerSet, ...      │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Immutable Events: Events are immutable facts about what happened.
    They cannot be changed, only new events can be appended.

    Commit Visibility: An event is visible only if the invocation that
    emitted it committed. Rolled-back invocations leave no trace.

    Ordering: Events within a ledger keep their commit order.
    Cross-ledger ordering is not guaranteed.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type, TypeVar

from ccbridge.codec import canonical_json

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events emitted by bridge components.

    Example:
        @dataclass
        class AssetMinted(Event):
            asset_id: int = 0
            to: str = ""
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    ledger_id: int = 0
    emitter: str = ""

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def digest(self) -> str:
        """Deterministic digest of event content."""
        return hashlib.sha256(canonical_json(self.to_dict())).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# PROTOCOL EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Sent(Event):
    """Emitted on the origin ledger when an asset is burned and its message submitted."""
    message_id: str = ""
    destination_ledger_id: int = 0
    receiver: str = ""
    asset_id: int = 0
    metadata_uri: str = ""
    fee_paid: str = "0"
    sender: str = ""


@dataclass
class Received(Event):
    """Emitted on the destination ledger when an inbound transfer is minted."""
    message_id: str = ""
    source_ledger_id: int = 0
    source_endpoint: str = ""
    asset_id: int = 0
    receiver: str = ""


# ════════════════════════════════════════════════════════════════════════════
# REGISTRY AND ADMINISTRATIVE EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class AssetMinted(Event):
    asset_id: int = 0
    to: str = ""
    metadata_uri: str = ""


@dataclass
class AssetBurned(Event):
    asset_id: int = 0
    owner: str = ""
    burned_by: str = ""


@dataclass
class Approval(Event):
    asset_id: int = 0
    owner: str = ""
    approved: str = ""


@dataclass
class ApprovalForAll(Event):
    owner: str = ""
    operator: str = ""
    approved: bool = False


@dataclass
class MinterChanged(Event):
    previous_minter: str = ""
    new_minter: str = ""


@dataclass
class PeerSet(Event):
    destination_ledger_id: int = 0
    peer: str = ""


@dataclass
class PeerRevoked(Event):
    destination_ledger_id: int = 0
    previous_peer: str = ""


@dataclass
class OwnershipTransferred(Event):
    previous_owner: str = ""
    new_owner: str = ""


@dataclass
class TokenTransfer(Event):
    token: str = ""
    sender: str = ""
    recipient: str = ""
    amount: str = "0"


@dataclass
class TokenApproval(Event):
    token: str = ""
    owner: str = ""
    spender: str = ""
    amount: str = "0"


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════


class EventLog:
    """
    Append-only event log of one ledger.

    The log participates in ledger transactions: its snapshot is its
    length, and restoring truncates anything appended since.
    """

    def __init__(self):
        self._events: List[Event] = []
        self._lock = threading.RLock()

    def append(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def snapshot(self) -> int:
        with self._lock:
            return len(self._events)

    def restore(self, state: int) -> None:
        with self._lock:
            del self._events[state:]

    def since(self, position: int) -> List[Event]:
        with self._lock:
            return list(self._events[position:])

    def query(
        self,
        event_type: Optional[Type[E]] = None,
        **match: Any,
    ) -> List[Event]:
        """Return events of a type whose attributes equal every keyword given."""
        with self._lock:
            events = list(self._events)
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        for key, value in match.items():
            events = [e for e in events if getattr(e, key, None) == value]
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __iter__(self):
        with self._lock:
            return iter(list(self._events))


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
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


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Handler failures never propagate to the publisher; the ledger has
    already committed by the time an event is published. They are
    counted, logged, and passed to ``on_error`` when provided.

    Example:
        bus = EventBus()

        @bus.subscribe(Sent, Received)
        def handle_transfer_events(event):
            print(f"Transfer event: {event.event_type}")
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
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
        """Decorator to subscribe a handler to event types (higher priority runs first)."""
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
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
                and (r.filter_func is None or r.filter_func(event))
            ]

        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
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
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }
