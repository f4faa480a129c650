"""
Message Transport

The bridge consumes a message transport it does not control. The transport
guarantees only eventual, possibly duplicated, possibly never delivered,
unordered delivery. This module defines the interface the endpoint relies on
and an in-memory network that can reproduce every behaviour the real
transport is allowed to exhibit.

Architecture:

    ┌──────────────┐   submit()    ┌────────────────────────┐   deliver()   ┌──────────────┐
    │ Endpoint  X  │──────────────▶│    InMemoryTransport    │──────────────▶│ Endpoint  Y  │
    │ (ledger X)   │  quote_fee()  │  in-flight envelopes    │ redeliver()   │ (ledger Y)   │
    └──────────────┘               │  drop() / inject()      │               └──────────────┘
           │                       └────────────────────────┘                      │
           ▼                                   │                                   ▼
    LedgerRouter X                      DeliveryReport                      LedgerRouter Y
    (collects fee on X)                                                     (is the caller of
                                                                             on_message_received)

Submission is released to the network only when the originating ledger
invocation commits; a rolled-back send leaves nothing in flight.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from ccbridge.codec import canonical_json
from ccbridge.config import BridgeSettings, get_config
from ccbridge.fee_token import FeeToken
from ccbridge.hardening import BridgeError, CryptoUtils, ValidationErrors, require_address
from ccbridge.ledger import Ledger, new_address
from ccbridge.observability import BridgeLayer, get_logger


class TransportError(Exception):
    """The transport refused a quote or a submission."""
    pass


class UnsupportedDestination(TransportError):
    pass


class PayloadTooLarge(TransportError):
    pass


# =============================================================================
# WIRE TYPES
# =============================================================================

@dataclass(frozen=True)
class Envelope:
    """
    Delivery wrapper constructed by the transport.

    The endpoint reads ``sender`` and ``source_ledger_id`` to authenticate
    and ``payload`` for the transfer message. Everything else is delivery
    metadata owned by the transport.
    """
    source_ledger_id: int
    destination_ledger_id: int
    sender: str
    receiver: str
    message_id: str
    payload: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_ledger_id": self.source_ledger_id,
            "destination_ledger_id": self.destination_ledger_id,
            "sender": self.sender,
            "receiver": self.receiver,
            "message_id": self.message_id,
            "payload": self.payload.decode("utf-8", errors="replace"),
        }


@dataclass(frozen=True)
class FeeAuthorization:
    """Permission for the transport to collect its fee from ``payer`` on ``token``."""
    token: FeeToken
    payer: str
    amount: Decimal


class MessageTransport(Protocol):
    """Interface of the transport as seen from one source ledger."""

    @property
    def address(self) -> str:
        ...

    def quote_fee(self, destination_ledger_id: int, payload: bytes) -> Decimal:
        ...

    def submit(
        self,
        sender: str,
        destination_ledger_id: int,
        destination_address: str,
        payload: bytes,
        fee_authorization: FeeAuthorization,
    ) -> str:
        ...


class DeliveryOutcome(Enum):
    DELIVERED = "delivered"
    REJECTED = "rejected"
    NO_RECEIVER = "no_receiver"


@dataclass
class DeliveryReport:
    """Result of one delivery attempt, as observed by the transport."""
    envelope: Envelope
    outcome: DeliveryOutcome
    attempt: int = 1
    error_code: str = ""
    error: str = ""
    delivered_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def message_id(self) -> str:
        return self.envelope.message_id

    @property
    def ok(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "outcome": self.outcome.value,
            "attempt": self.attempt,
            "error_code": self.error_code,
            "error": self.error,
            "delivered_at": self.delivered_at,
        }


InboundHandler = Callable[[Envelope, str], None]


# =============================================================================
# LEDGER ROUTER
# =============================================================================

class LedgerRouter:
    """
    The transport's presence on one ledger.

    Implements ``MessageTransport`` for endpoints on that ledger and is the
    identity that invokes their inbound callback.
    """

    def __init__(self, network: "InMemoryTransport", ledger: Ledger, address: Optional[str] = None):
        self._network = network
        self.ledger = ledger
        self._address = require_address(address) if address else new_address()
        self._log = get_logger(ledger.name, BridgeLayer.TRANSPORT)

    @property
    def address(self) -> str:
        return self._address

    def quote_fee(self, destination_ledger_id: int, payload: bytes) -> Decimal:
        return self._network.quote(self.ledger.ledger_id, destination_ledger_id, payload)

    def submit(
        self,
        sender: str,
        destination_ledger_id: int,
        destination_address: str,
        payload: bytes,
        fee_authorization: FeeAuthorization,
    ) -> str:
        """
        Collect the fee and accept a message for delivery.

        Must be called inside the sender's ledger invocation; the envelope
        enters the network only if that invocation commits.
        """
        sender = require_address(sender, "sender")
        destination_address = require_address(destination_address, "destination_address")
        fee = self.quote_fee(destination_ledger_id, payload)

        if fee_authorization.token.ledger is not self.ledger:
            raise TransportError("Fee token does not live on the source ledger")
        fee_authorization.token.transfer_from(
            fee_authorization.payer, self.address, fee, caller=self.address,
        )

        nonce = self._network.next_nonce()
        message_id = "0x" + CryptoUtils.hash_sha256(canonical_json({
            "source_ledger_id": self.ledger.ledger_id,
            "destination_ledger_id": destination_ledger_id,
            "sender": sender,
            "receiver": destination_address,
            "payload": payload.hex(),
            "nonce": nonce,
        }))
        envelope = Envelope(
            source_ledger_id=self.ledger.ledger_id,
            destination_ledger_id=destination_ledger_id,
            sender=sender,
            receiver=destination_address,
            message_id=message_id,
            payload=payload,
        )
        self.ledger.after_commit(lambda: self._network.enqueue(envelope))
        self._log.debug(
            "Message accepted",
            operation="submit",
            message_id=message_id,
            destination_ledger_id=destination_ledger_id,
            fee=str(fee),
        )
        return message_id


# =============================================================================
# IN-MEMORY NETWORK
# =============================================================================

class InMemoryTransport:
    """
    Simulated transport network connecting any number of ledgers.

    Nothing is delivered until the caller asks: ``deliver``/``deliver_all``
    model eventual delivery, ``redeliver`` models duplication,
    ``deliver_all(shuffle=True)`` models reordering, ``drop`` models loss
    and ``inject`` models a compromised or buggy transport presenting a
    forged envelope.

    Example:
        transport = InMemoryTransport()
        router_x = transport.attach(ledger_x)
        router_y = transport.attach(ledger_y)
        ...
        message_id = endpoint_x.send(ledger_y.ledger_id, holder, 1, caller=holder)
        report = transport.deliver(message_id)
    """

    def __init__(self, settings: Optional[BridgeSettings] = None):
        self._settings = settings or get_config()
        self._routers: Dict[int, LedgerRouter] = {}
        self._multipliers: Dict[int, Decimal] = {}
        self._receivers: Dict[tuple, InboundHandler] = {}
        self._in_flight: Dict[str, Envelope] = {}
        self._history: Dict[str, Envelope] = {}
        self._attempts: Dict[str, int] = {}
        self._reports: List[DeliveryReport] = []
        self._listeners: List[Callable[[DeliveryReport], None]] = []
        self._nonce = 0
        self._lock = threading.RLock()
        self._log = get_logger("network", BridgeLayer.TRANSPORT)

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    def attach(
        self,
        ledger: Ledger,
        fee_multiplier: Decimal = Decimal("1"),
        address: Optional[str] = None,
    ) -> LedgerRouter:
        """Connect a ledger to the network and return its router."""
        with self._lock:
            if ledger.ledger_id in self._routers:
                raise TransportError(f"Ledger {ledger.ledger_id} is already attached")
            router = LedgerRouter(self, ledger, address)
            self._routers[ledger.ledger_id] = router
            self._multipliers[ledger.ledger_id] = Decimal(fee_multiplier)
            return router

    def router(self, ledger_id: int) -> LedgerRouter:
        try:
            return self._routers[ledger_id]
        except KeyError:
            raise UnsupportedDestination(f"Ledger {ledger_id} is not attached to the transport") from None

    def register_receiver(self, ledger_id: int, address: str, handler: InboundHandler) -> None:
        """Bind an inbound handler to an address on an attached ledger."""
        self.router(ledger_id)
        with self._lock:
            self._receivers[(ledger_id, require_address(address))] = handler

    def on_report(self, listener: Callable[[DeliveryReport], None]) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Cost oracle
    # -------------------------------------------------------------------------

    def quote(self, source_ledger_id: int, destination_ledger_id: int, payload: bytes) -> Decimal:
        """Fee for carrying ``payload`` to ``destination_ledger_id``."""
        if destination_ledger_id == source_ledger_id:
            raise UnsupportedDestination("Source and destination ledgers must differ")
        self.router(destination_ledger_id)

        transport = self._settings.transport
        if len(payload) > transport.max_payload_bytes.get():
            raise PayloadTooLarge(
                f"Payload of {len(payload)} bytes exceeds {transport.max_payload_bytes.get()}"
            )
        base = transport.base_fee.get() + transport.per_byte_fee.get() * len(payload)
        return base * self._multipliers[destination_ledger_id]

    # -------------------------------------------------------------------------
    # Message flow
    # -------------------------------------------------------------------------

    def next_nonce(self) -> int:
        with self._lock:
            self._nonce += 1
            return self._nonce

    def enqueue(self, envelope: Envelope) -> None:
        with self._lock:
            self._in_flight[envelope.message_id] = envelope
            self._history[envelope.message_id] = envelope
        self._log.info(
            "Message in flight",
            operation="enqueue",
            message_id=envelope.message_id,
            source_ledger_id=envelope.source_ledger_id,
            destination_ledger_id=envelope.destination_ledger_id,
        )

    def pending(self) -> List[Envelope]:
        """Envelopes submitted but not yet delivered or dropped."""
        with self._lock:
            return list(self._in_flight.values())

    def envelope(self, message_id: str) -> Optional[Envelope]:
        with self._lock:
            return self._history.get(message_id)

    def reports(self, message_id: Optional[str] = None) -> List[DeliveryReport]:
        with self._lock:
            return [r for r in self._reports if message_id is None or r.message_id == message_id]

    def deliver(self, message_id: str) -> DeliveryReport:
        """Deliver an in-flight message once."""
        with self._lock:
            envelope = self._in_flight.pop(message_id, None)
        if envelope is None:
            raise TransportError(f"Message {message_id} is not in flight")
        return self._dispatch(envelope)

    def deliver_all(self, shuffle: bool = False, seed: Optional[int] = None) -> List[DeliveryReport]:
        """Deliver every in-flight message, optionally in a random order."""
        with self._lock:
            message_ids = list(self._in_flight)
        if shuffle:
            random.Random(seed).shuffle(message_ids)
        return [self.deliver(mid) for mid in message_ids]

    def redeliver(self, message_id: str) -> DeliveryReport:
        """Deliver a message that was already delivered (duplicate delivery)."""
        envelope = self.envelope(message_id)
        if envelope is None:
            raise TransportError(f"Unknown message {message_id}")
        with self._lock:
            self._in_flight.pop(message_id, None)
        return self._dispatch(envelope)

    def drop(self, message_id: str) -> Envelope:
        """Lose an in-flight message permanently."""
        with self._lock:
            envelope = self._in_flight.pop(message_id, None)
        if envelope is None:
            raise TransportError(f"Message {message_id} is not in flight")
        self._log.warning("Message dropped", operation="drop", message_id=message_id)
        return envelope

    def inject(self, envelope: Envelope) -> DeliveryReport:
        """Present an arbitrary envelope to its receiver, bypassing submission."""
        self._log.warning(
            "Injecting unsubmitted envelope",
            operation="inject",
            message_id=envelope.message_id,
            claimed_sender=envelope.sender,
        )
        return self._dispatch(envelope)

    def _dispatch(self, envelope: Envelope) -> DeliveryReport:
        router = self.router(envelope.destination_ledger_id)
        with self._lock:
            attempt = self._attempts.get(envelope.message_id, 0) + 1
            self._attempts[envelope.message_id] = attempt
            handler = self._receivers.get((envelope.destination_ledger_id, envelope.receiver))

        if handler is None:
            report = DeliveryReport(
                envelope=envelope,
                outcome=DeliveryOutcome.NO_RECEIVER,
                attempt=attempt,
                error="No receiver registered at destination address",
            )
        else:
            try:
                handler(envelope, router.address)
                report = DeliveryReport(envelope=envelope, outcome=DeliveryOutcome.DELIVERED, attempt=attempt)
            except BridgeError as e:
                report = DeliveryReport(
                    envelope=envelope,
                    outcome=DeliveryOutcome.REJECTED,
                    attempt=attempt,
                    error_code=e.code,
                    error=str(e),
                )
            except ValidationErrors as e:
                report = DeliveryReport(
                    envelope=envelope,
                    outcome=DeliveryOutcome.REJECTED,
                    attempt=attempt,
                    error_code="validation",
                    error=str(e),
                )

        with self._lock:
            self._reports.append(report)
        if not report.ok:
            self._log.warning(
                "Delivery failed",
                operation="deliver",
                message_id=envelope.message_id,
                outcome=report.outcome.value,
                error_code=report.error_code,
                attempt=attempt,
            )
        for listener in list(self._listeners):
            listener(report)
        return report
