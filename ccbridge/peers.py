"""Peer Registry.

Maps a destination ledger id to the identity of the trusted bridge endpoint
on that ledger. The same table serves both directions:

    outbound   the peer is the address messages are submitted to
    inbound    the peer is the only sender accepted from that ledger

Entries have three observable states. ``UNSET`` means never configured.
``ACTIVE`` means an identity is configured. ``REVOKED`` means an identity
was configured and later removed. ``get_peer`` returns ``None`` for both
``UNSET`` and ``REVOKED``, so a revoked peer can neither receive nor
originate transfers. ``peer_status`` tells the two apart for operators.
The zero address is never accepted as a peer identity.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from ccbridge.events import PeerRevoked, PeerSet
from ccbridge.hardening import PeerNotConfigured, Validators, require_address
from ccbridge.ledger import Ledger, OwnedComponent, atomic
from ccbridge.observability import BridgeLayer, get_logger


class PeerStatus(Enum):
    UNSET = "unset"
    ACTIVE = "active"
    REVOKED = "revoked"


class PeerRegistry(OwnedComponent):
    """Administratively maintained table of trusted remote endpoints."""

    resource_type = "peer_registry"

    def __init__(self, ledger: Ledger, admin: str, address: Optional[str] = None):
        super().__init__(ledger, admin, address)
        self._log = get_logger(ledger.name, BridgeLayer.PEERS)
        self._state["peers"] = {}
        self._state["revoked"] = set()

    def get_peer(self, destination_ledger_id: int) -> Optional[str]:
        return self._state["peers"].get(destination_ledger_id)

    def require_peer(self, destination_ledger_id: int) -> str:
        peer = self.get_peer(destination_ledger_id)
        if peer is None:
            raise PeerNotConfigured(
                f"No peer configured for ledger {destination_ledger_id} "
                f"(status: {self.peer_status(destination_ledger_id).value})"
            )
        return peer

    def peer_status(self, destination_ledger_id: int) -> PeerStatus:
        if destination_ledger_id in self._state["peers"]:
            return PeerStatus.ACTIVE
        if destination_ledger_id in self._state["revoked"]:
            return PeerStatus.REVOKED
        return PeerStatus.UNSET

    def peers(self) -> Dict[int, str]:
        return dict(self._state["peers"])

    @atomic
    def set_peer(self, destination_ledger_id: int, remote_identity: str, caller: str) -> None:
        """Configure (or overwrite) the trusted endpoint for a ledger."""
        self.only_admin(caller, "set_peer")
        Validators.validate_ledger_id(destination_ledger_id, "destination_ledger_id").raise_if_invalid()
        remote_identity = require_address(remote_identity, "remote_identity")

        self._state["peers"][destination_ledger_id] = remote_identity
        self._state["revoked"].discard(destination_ledger_id)
        self.emit(PeerSet(destination_ledger_id=destination_ledger_id, peer=remote_identity))
        self.audit_success(caller, "set_peer", ledger_id=destination_ledger_id, peer=remote_identity)
        self._log.info(
            "Peer configured",
            operation="set_peer",
            destination_ledger_id=destination_ledger_id,
            peer=remote_identity,
        )

    @atomic
    def remove_peer(self, destination_ledger_id: int, caller: str) -> str:
        """Revoke the trusted endpoint for a ledger. Returns the revoked identity."""
        self.only_admin(caller, "remove_peer")
        previous = self.require_peer(destination_ledger_id)

        del self._state["peers"][destination_ledger_id]
        self._state["revoked"].add(destination_ledger_id)
        self.emit(PeerRevoked(destination_ledger_id=destination_ledger_id, previous_peer=previous))
        self.audit_success(caller, "remove_peer", ledger_id=destination_ledger_id, peer=previous)
        self._log.info(
            "Peer revoked",
            operation="remove_peer",
            destination_ledger_id=destination_ledger_id,
            previous_peer=previous,
        )
        return previous
