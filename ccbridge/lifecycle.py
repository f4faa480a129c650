"""
Transfer Lifecycle Tracking

Off-ledger bookkeeping that correlates ``Sent`` on the origin ledger with
``Received`` on the destination ledger by message id, and surfaces transfers
that will never complete.

State Machine:

    PRESENT_ORIGIN ──send──▶ BURNED_AWAITING_DELIVERY ──delivery──▶ AUTHENTICATING
                                     │                                  │      │
                                     │ no delivery in time              │      │ accepted
                                     ▼                                  │      ▼
                                   STUCK ◀────────── rejected ──────────┘  PRESENT_DESTINATION
                                     │
                                     └── late delivery ──▶ AUTHENTICATING

A stuck transfer has been burned at the origin and not minted at the
destination; the asset exists on neither ledger. The core protocol never
retries. The tracker only reports, and ``stuck_transfers()`` is the trail
an operator needs for manual recovery.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ccbridge.config import get_config
from ccbridge.events import EventBus, Received, Sent
from ccbridge.hardening import InvariantChecker
from ccbridge.observability import BridgeLayer, get_logger
from ccbridge.transport import DeliveryReport, InMemoryTransport


# =============================================================================
# TRANSFER STATES
# =============================================================================

class TransferState(Enum):
    """Where the asset of a transfer currently is."""
    PRESENT_ORIGIN = "present_origin"
    BURNED_AWAITING_DELIVERY = "burned_awaiting_delivery"
    AUTHENTICATING = "authenticating"
    PRESENT_DESTINATION = "present_destination"
    STUCK = "stuck"

    def is_terminal(self) -> bool:
        return self == TransferState.PRESENT_DESTINATION

    def asset_in_flight(self) -> bool:
        """True when the asset exists on neither ledger."""
        return self in {
            TransferState.BURNED_AWAITING_DELIVERY,
            TransferState.AUTHENTICATING,
            TransferState.STUCK,
        }


VALID_TRANSITIONS: Dict[TransferState, Set[TransferState]] = {
    TransferState.PRESENT_ORIGIN: {
        TransferState.BURNED_AWAITING_DELIVERY,
    },
    TransferState.BURNED_AWAITING_DELIVERY: {
        TransferState.AUTHENTICATING,
        TransferState.STUCK,
    },
    TransferState.AUTHENTICATING: {
        TransferState.PRESENT_DESTINATION,
        TransferState.STUCK,
    },
    # The transport may still deliver after the deadline.
    TransferState.STUCK: {
        TransferState.AUTHENTICATING,
    },
    TransferState.PRESENT_DESTINATION: set(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StateTransition:
    """Record of one state change of a transfer."""
    from_state: TransferState
    to_state: TransferState
    timestamp: str
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateTransition":
        return cls(
            from_state=TransferState(data["from_state"]),
            to_state=TransferState(data["to_state"]),
            timestamp=data["timestamp"],
            reason=data.get("reason", ""),
        )


@dataclass
class TransferRecord:
    """Journal entry for one cross-ledger transfer."""
    message_id: str
    asset_id: int
    source_ledger_id: int
    destination_ledger_id: int
    sender: str
    receiver: str
    metadata_uri: str
    origin_endpoint: str = ""
    fee_paid: str = "0"
    transfer_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: TransferState = TransferState.PRESENT_ORIGIN
    reason: str = ""
    created_at: str = field(default_factory=lambda: _now().isoformat())
    updated_at: str = ""
    delivery_attempts: int = 0
    duplicate_deliveries: int = 0
    history: List[StateTransition] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    def advance_to(self, target: TransferState, reason: str = "", at: Optional[datetime] = None) -> None:
        """Move to ``target``; raises InvariantViolation on an illegal transition."""
        InvariantChecker.check_state_transition(self.state, target, VALID_TRANSITIONS)
        timestamp = (at or _now()).isoformat()
        self.history.append(StateTransition(
            from_state=self.state,
            to_state=target,
            timestamp=timestamp,
            reason=reason or f"Advanced to {target.value}",
        ))
        self.state = target
        self.reason = reason
        self.updated_at = timestamp

    def entered_current_state_at(self) -> datetime:
        return datetime.fromisoformat(self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transfer_id": self.transfer_id,
            "message_id": self.message_id,
            "asset_id": str(self.asset_id),
            "source_ledger_id": str(self.source_ledger_id),
            "destination_ledger_id": str(self.destination_ledger_id),
            "sender": self.sender,
            "receiver": self.receiver,
            "metadata_uri": self.metadata_uri,
            "origin_endpoint": self.origin_endpoint,
            "fee_paid": self.fee_paid,
            "state": self.state.value,
            "reason": self.reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "delivery_attempts": self.delivery_attempts,
            "duplicate_deliveries": self.duplicate_deliveries,
            "history": [t.to_dict() for t in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferRecord":
        return cls(
            transfer_id=data["transfer_id"],
            message_id=data["message_id"],
            asset_id=int(data["asset_id"]),
            source_ledger_id=int(data["source_ledger_id"]),
            destination_ledger_id=int(data["destination_ledger_id"]),
            sender=data["sender"],
            receiver=data["receiver"],
            metadata_uri=data["metadata_uri"],
            origin_endpoint=data.get("origin_endpoint", ""),
            fee_paid=data.get("fee_paid", "0"),
            state=TransferState(data["state"]),
            reason=data.get("reason", ""),
            created_at=data["created_at"],
            updated_at=data.get("updated_at", ""),
            delivery_attempts=data.get("delivery_attempts", 0),
            duplicate_deliveries=data.get("duplicate_deliveries", 0),
            history=[StateTransition.from_dict(t) for t in data.get("history", [])],
        )


# =============================================================================
# TRACKER
# =============================================================================

class TransferTracker:
    """
    Correlates protocol events and delivery reports into transfer records.

    Example:
        tracker = TransferTracker()
        tracker.watch_bus(bus)
        tracker.watch_transport(transport)
        ...
        tracker.check_stuck()
        for record in tracker.stuck_transfers():
            print(record.message_id, record.asset_id, record.reason)
    """

    JOURNAL_VERSION = 1

    def __init__(self, stuck_after_seconds: Optional[int] = None):
        if stuck_after_seconds is None:
            stuck_after_seconds = get_config().lifecycle.stuck_after_seconds.get()
        self.stuck_after = timedelta(seconds=stuck_after_seconds)
        self._records: Dict[str, TransferRecord] = {}
        self._unmatched_reports = 0
        self._lock = threading.RLock()
        self._log = get_logger("tracker", BridgeLayer.LIFECYCLE)

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def watch_bus(self, bus: EventBus) -> None:
        bus.subscribe(Sent)(self.on_sent)
        bus.subscribe(Received)(self.on_received)

    def watch_transport(self, transport: InMemoryTransport) -> None:
        transport.on_report(self.on_delivery_report)

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def on_sent(self, event: Sent) -> TransferRecord:
        with self._lock:
            existing = self._records.get(event.message_id)
            if existing is not None:
                return existing
            record = TransferRecord(
                message_id=event.message_id,
                asset_id=event.asset_id,
                source_ledger_id=event.ledger_id,
                destination_ledger_id=event.destination_ledger_id,
                sender=event.sender,
                receiver=event.receiver,
                metadata_uri=event.metadata_uri,
                origin_endpoint=event.emitter,
                fee_paid=event.fee_paid,
            )
            record.advance_to(TransferState.BURNED_AWAITING_DELIVERY, "Burned at origin and submitted")
            self._records[record.message_id] = record

        self._log.info(
            "Transfer initiated",
            operation="track_sent",
            transfer_id=record.transfer_id,
            message_id=record.message_id,
            asset_id=record.asset_id,
        )
        return record

    def on_received(self, event: Received) -> None:
        with self._lock:
            record = self._records.get(event.message_id)
            if record is None:
                self._unmatched_reports += 1
                self._log.warning(
                    "Received event for unknown transfer",
                    operation="track_received",
                    message_id=event.message_id,
                )
                return
            self._complete(record, f"Minted on ledger {event.ledger_id}")

    def on_delivery_report(self, report: DeliveryReport) -> None:
        with self._lock:
            record = self._records.get(report.message_id)
            if record is None:
                self._unmatched_reports += 1
                self._log.warning(
                    "Delivery report for unknown transfer",
                    operation="track_delivery",
                    message_id=report.message_id,
                    outcome=report.outcome.value,
                )
                return

            record.delivery_attempts += 1
            if record.state == TransferState.PRESENT_DESTINATION:
                if report.attempt > 1:
                    record.duplicate_deliveries += 1
                return

            if report.ok:
                self._complete(record, "Delivery accepted")
                return

            self._authenticate(record)
            record.advance_to(
                TransferState.STUCK,
                f"Delivery rejected: {report.error_code or report.outcome.value}",
            )
        self._log.warning(
            "Transfer stuck",
            operation="track_delivery",
            error_code=report.error_code,
            transfer_id=record.transfer_id,
            message_id=record.message_id,
            asset_id=record.asset_id,
        )

    def _authenticate(self, record: TransferRecord) -> None:
        if record.state != TransferState.AUTHENTICATING:
            record.advance_to(TransferState.AUTHENTICATING, "Delivered to destination endpoint")

    def _complete(self, record: TransferRecord, reason: str) -> None:
        if record.state == TransferState.PRESENT_DESTINATION:
            return
        self._authenticate(record)
        record.advance_to(TransferState.PRESENT_DESTINATION, reason)
        self._log.info(
            "Transfer completed",
            operation="track_complete",
            transfer_id=record.transfer_id,
            message_id=record.message_id,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, message_id: str) -> Optional[TransferRecord]:
        with self._lock:
            return self._records.get(message_id)

    def list(self, state: Optional[TransferState] = None) -> List[TransferRecord]:
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.created_at)
        if state is not None:
            records = [r for r in records if r.state == state]
        return records

    def check_stuck(self, now: Optional[datetime] = None) -> List[TransferRecord]:
        """Mark transfers awaiting delivery past the deadline as stuck."""
        now = now or _now()
        newly_stuck = []
        with self._lock:
            for record in self._records.values():
                if record.state != TransferState.BURNED_AWAITING_DELIVERY:
                    continue
                if now - record.entered_current_state_at() < self.stuck_after:
                    continue
                record.advance_to(
                    TransferState.STUCK,
                    f"No delivery within {int(self.stuck_after.total_seconds())}s",
                    at=now,
                )
                newly_stuck.append(record)

        for record in newly_stuck:
            self._log.warning(
                "Transfer stuck",
                operation="check_stuck",
                transfer_id=record.transfer_id,
                message_id=record.message_id,
                asset_id=record.asset_id,
            )
        return newly_stuck

    def stuck_transfers(self) -> List[TransferRecord]:
        return self.list(TransferState.STUCK)

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            records = list(self._records.values())
            unmatched = self._unmatched_reports
        by_state = {state.value: 0 for state in TransferState}
        for record in records:
            by_state[record.state.value] += 1
        return {
            "total": len(records),
            "by_state": by_state,
            "duplicate_deliveries": sum(r.duplicate_deliveries for r in records),
            "unmatched_reports": unmatched,
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: Union[str, Path], merge: bool = False) -> Path:
        """Write every record to a JSON journal.

        With ``merge``, records already in an existing journal are kept and
        this tracker's records replace them by message id.
        """
        path = Path(path)
        records: Dict[str, TransferRecord] = {}
        if merge and path.exists():
            records.update((r.message_id, r) for r in type(self).load(path).list())
        records.update((r.message_id, r) for r in self.list())

        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": self.JOURNAL_VERSION,
            "transfers": [r.to_dict() for r in sorted(records.values(), key=lambda r: r.created_at)],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return path

    @classmethod
    def load(cls, path: Union[str, Path], stuck_after_seconds: Optional[int] = None) -> "TransferTracker":
        """Rebuild a tracker from a journal written by ``save``."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if data.get("version") != cls.JOURNAL_VERSION:
            raise ValueError(f"Unsupported journal version: {data.get('version')}")

        tracker = cls(stuck_after_seconds)
        for entry in data.get("transfers", []):
            record = TransferRecord.from_dict(entry)
            tracker._records[record.message_id] = record
        return tracker
