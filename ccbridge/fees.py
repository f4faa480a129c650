"""Fee estimation for outbound transfers."""

from __future__ import annotations

from decimal import Decimal

from ccbridge.codec import TransferMessage, encode_transfer_message
from ccbridge.observability import BridgeLayer, get_logger
from ccbridge.peers import PeerRegistry
from ccbridge.transport import MessageTransport

ZERO = Decimal("0")


class FeeEstimator:
    """
    Quotes the transport cost of a transfer message.

    A destination without a configured peer is unreachable and quotes zero.
    Callers must treat a zero quote as "cannot send", not as "free".
    """

    def __init__(self, peers: PeerRegistry, transport: MessageTransport):
        self.peers = peers
        self.transport = transport
        self._log = get_logger(peers.ledger.name, BridgeLayer.FEES)

    def estimate(self, destination_ledger_id: int, message: TransferMessage) -> Decimal:
        if self.peers.get_peer(destination_ledger_id) is None:
            self._log.debug(
                "No peer for destination, quoting zero",
                operation="estimate",
                destination_ledger_id=destination_ledger_id,
            )
            return ZERO

        payload = encode_transfer_message(message)
        return self.transport.quote_fee(destination_ledger_id, payload)
