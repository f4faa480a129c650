"""
Bridge Endpoint

One endpoint is deployed per ledger. It is the only component that crosses
ledger boundaries: outbound it burns an asset and hands a transfer message
to the transport; inbound it authenticates the message and mints the asset
through the local registry.

Send path (one atomic invocation on the origin ledger):

    ┌─────────────┐  1 peer   ┌────────────┐  2 ownership   ┌───────────────┐
    │ send(dest,  │──────────▶│ PeerRegistry│──────────────▶│ AssetRegistry │
    │  receiver,  │           └────────────┘  3 read uri    │  4 burn       │
    │  asset_id)  │                                          └───────┬───────┘
    └─────────────┘                                                  │
           ▲              8 Sent     ┌────────────┐  6 quote/hold  ┌──▼──────────┐
           └─────────────────────────│  Transport │◀───────────────│ 5 encode    │
                                     │  7 submit  │   approve fee  └─────────────┘
                                     └────────────┘

Receive path (one atomic invocation on the destination ledger):

    transport ──▶ on_message_received(envelope)
                    1 sender == peer[source]      else UnauthorizedSource
                    2 decode payload              else MalformedMessage
                    3 mint via registry           DuplicateAsset if present
                    5 Received

If any step fails the invocation is rolled back; a failed send leaves the
asset where it was and nothing in flight.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ccbridge.codec import TransferMessage, decode_transfer_message, encode_transfer_message
from ccbridge.config import get_config
from ccbridge.events import Received, Sent
from ccbridge.fee_token import FeeToken
from ccbridge.fees import FeeEstimator
from ccbridge.hardening import (
    CryptoUtils,
    DuplicateAsset,
    InsufficientBalance,
    InsufficientPrepaidFee,
    NotOwner,
    UnauthorizedCaller,
    UnauthorizedSource,
    require_address,
)
from ccbridge.ledger import Ledger, OwnedComponent, atomic
from ccbridge.observability import BridgeLayer, get_logger, timed_operation
from ccbridge.peers import PeerRegistry
from ccbridge.registry import AssetRecord, AssetRegistry
from ccbridge.transport import Envelope, FeeAuthorization, MessageTransport


@dataclass(frozen=True)
class EndpointConfig:
    """
    Construction-time authority for an endpoint.

    ``admin`` is the administrative owner. ``placeholder_uri`` sizes fee
    estimates for assets the registry does not hold; when unset it comes
    from ``bridge.estimate_placeholder_uri``.
    """
    admin: str
    placeholder_uri: Optional[str] = None


class BridgeEndpoint(OwnedComponent):
    """
    Burn-and-mint bridge endpoint for one ledger.

    Example:
        endpoint = BridgeEndpoint(
            ledger, EndpointConfig(admin=admin.address),
            registry=registry, peers=peers, fee_token=link, transport=router,
        )
        registry.set_minter(endpoint.address, caller=admin.address)
        endpoint.set_peer(remote_ledger_id, remote_endpoint, caller=admin.address)
    """

    resource_type = "bridge_endpoint"

    def __init__(
        self,
        ledger: Ledger,
        config: EndpointConfig,
        registry: AssetRegistry,
        peers: PeerRegistry,
        fee_token: FeeToken,
        transport: MessageTransport,
        address: Optional[str] = None,
    ):
        super().__init__(ledger, config.admin, address)
        for component in (registry, peers, fee_token):
            if component.ledger is not ledger:
                raise ValueError(f"{component.resource_type} lives on a different ledger")
        self.config = config
        self.registry = registry
        self.peers = peers
        self.fee_token = fee_token
        self.transport = transport
        self.fees = FeeEstimator(peers, transport)
        self._state["processed_messages"] = set()
        self._state["bridged_assets"] = set()
        self._log = get_logger(ledger.name, BridgeLayer.ENDPOINT)

    @property
    def placeholder_uri(self) -> str:
        if self.config.placeholder_uri is not None:
            return self.config.placeholder_uri
        return get_config().bridge.estimate_placeholder_uri.get()

    def prepaid_balance(self) -> Decimal:
        """Fee-token balance the endpoint holds for paying the transport."""
        return self.fee_token.balance_of(self.address)

    # -------------------------------------------------------------------------
    # Holder entry points
    # -------------------------------------------------------------------------

    @timed_operation("send")
    @atomic
    def send(self, destination_ledger_id: int, receiver: str, asset_id: int, caller: str) -> str:
        """
        Move ``asset_id`` to ``receiver`` on ``destination_ledger_id``.

        The caller must own the asset and must have approved this endpoint
        to burn it. Returns the transport message id.

        Raises:
            PeerNotConfigured: no trusted endpoint for the destination.
            AssetNotFound: the asset does not exist here.
            NotOwner: the caller does not own the asset.
            NotOwnerOrApproved: the endpoint is not approved to burn it.
            InsufficientPrepaidFee: held fee balance is below the quote.
        """
        caller = require_address(caller, "caller")
        receiver = require_address(receiver, "receiver")

        peer = self.peers.require_peer(destination_ledger_id)

        owner = self.registry.owner_of(asset_id)
        if owner != caller:
            raise NotOwner(f"Caller {caller} does not own asset {asset_id}")

        metadata_uri = self.registry.metadata_uri(asset_id)
        self.registry.burn(asset_id, caller=self.address)
        self._state["bridged_assets"].add(asset_id)

        message = TransferMessage(receiver=receiver, asset_id=asset_id, metadata_uri=metadata_uri)
        payload = encode_transfer_message(message)

        fee = self.fees.estimate(destination_ledger_id, message)
        available = self.prepaid_balance()
        if available < fee:
            self._log.warning(
                "Prepaid fee balance too low",
                operation="send",
                error_code=InsufficientPrepaidFee.code,
                required=str(fee),
                available=str(available),
            )
            raise InsufficientPrepaidFee(required=fee, available=available)

        self.fee_token.approve(self.transport.address, fee, caller=self.address)
        message_id = self.transport.submit(
            self.address,
            destination_ledger_id,
            peer,
            payload,
            FeeAuthorization(token=self.fee_token, payer=self.address, amount=fee),
        )

        self.emit(Sent(
            message_id=message_id,
            destination_ledger_id=destination_ledger_id,
            receiver=receiver,
            asset_id=asset_id,
            metadata_uri=metadata_uri,
            fee_paid=str(fee),
            sender=caller,
        ))
        self._log.info(
            "Transfer sent",
            operation="send",
            message_id=message_id,
            asset_id=asset_id,
            destination_ledger_id=destination_ledger_id,
        )
        return message_id

    def estimate_transfer_cost(self, destination_ledger_id: int, receiver: str, asset_id: int) -> Decimal:
        """
        Quote a transfer without performing it.

        Uses the asset's real metadata URI when the asset exists here,
        otherwise a placeholder of representative size. Zero means the
        destination is unreachable.
        """
        receiver = require_address(receiver, "receiver")
        record = self.registry.get(asset_id)
        metadata_uri = record.metadata_uri if record is not None else self.placeholder_uri
        return self.fees.estimate(
            destination_ledger_id,
            TransferMessage(receiver=receiver, asset_id=asset_id, metadata_uri=metadata_uri),
        )

    # -------------------------------------------------------------------------
    # Transport callback
    # -------------------------------------------------------------------------

    @timed_operation("receive")
    @atomic
    def on_message_received(self, envelope: Envelope, caller: str) -> None:
        """
        Inbound callback, invoked by the transport on this ledger.

        Raises:
            UnauthorizedCaller: not invoked by the transport.
            UnauthorizedSource: envelope sender is not the peer for its source.
            MalformedMessage: payload cannot be decoded.
            DuplicateAsset: the message was already processed, or the asset
                already exists on this ledger.
        """
        if caller is None or caller.lower() != self.transport.address:
            raise UnauthorizedCaller(f"Caller {caller} is not the transport")

        expected = self.peers.get_peer(envelope.source_ledger_id)
        claimed = str(envelope.sender).lower()
        if expected is None or not CryptoUtils.secure_compare_str(claimed, expected):
            self._log.warning(
                "Rejected message from untrusted source",
                operation="receive",
                error_code=UnauthorizedSource.code,
                message_id=envelope.message_id,
                source_ledger_id=envelope.source_ledger_id,
                claimed_sender=claimed,
            )
            raise UnauthorizedSource(
                f"Sender {claimed} is not the peer for ledger {envelope.source_ledger_id}"
            )

        if envelope.message_id in self._state["processed_messages"]:
            self._log.warning(
                "Replayed message rejected",
                operation="receive",
                error_code=DuplicateAsset.code,
                message_id=envelope.message_id,
            )
            raise DuplicateAsset(f"Message {envelope.message_id} was already processed")

        message = decode_transfer_message(envelope.payload)
        if self.registry.exists(message.asset_id):
            self._log.warning(
                "Asset already exists on this ledger",
                operation="receive",
                error_code=DuplicateAsset.code,
                message_id=envelope.message_id,
                asset_id=message.asset_id,
            )
        self.registry.mint(message.receiver, message.asset_id, message.metadata_uri, caller=self.address)
        self._state["processed_messages"].add(envelope.message_id)
        self._state["bridged_assets"].add(message.asset_id)

        self.emit(Received(
            message_id=envelope.message_id,
            source_ledger_id=envelope.source_ledger_id,
            source_endpoint=claimed,
            asset_id=message.asset_id,
            receiver=message.receiver,
        ))
        self._log.info(
            "Transfer received",
            operation="receive",
            message_id=envelope.message_id,
            asset_id=message.asset_id,
            source_ledger_id=envelope.source_ledger_id,
        )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    @atomic
    def issue(self, to: str, asset_id: int, metadata_uri: str, caller: str) -> AssetRecord:
        """
        Mint original supply on this ledger (admin only).

        Ids that have already crossed this endpoint are refused, so a burned
        or in-flight asset cannot be reissued here. Ids must also be unique
        across the ledgers of a network at genesis; the endpoint cannot see
        other ledgers, so that is left to the operator.
        """
        self.only_admin(caller, "issue")
        if asset_id in self._state["bridged_assets"]:
            raise DuplicateAsset(f"Asset {asset_id} has already crossed this endpoint")
        record = self.registry.mint(to, asset_id, metadata_uri, caller=self.address)
        self.audit_success(caller, "issue", asset_id=asset_id, to=record.owner)
        return record

    def set_peer(self, destination_ledger_id: int, remote_identity: str, caller: str) -> None:
        self.only_admin(caller, "set_peer")
        self.peers.set_peer(destination_ledger_id, remote_identity, caller=caller)

    def remove_peer(self, destination_ledger_id: int, caller: str) -> str:
        self.only_admin(caller, "remove_peer")
        return self.peers.remove_peer(destination_ledger_id, caller=caller)

    @atomic
    def withdraw_token(self, token: FeeToken, beneficiary: str, caller: str) -> Decimal:
        """Sweep the endpoint's whole balance of ``token`` to ``beneficiary``."""
        self.only_admin(caller, "withdraw_token")
        beneficiary = require_address(beneficiary, "beneficiary")
        amount = token.balance_of(self.address)
        if amount <= 0:
            raise InsufficientBalance(f"{token.symbol}: nothing to withdraw")

        token.transfer(beneficiary, amount, caller=self.address)
        self.audit_success(
            caller, "withdraw_token", token=token.symbol, beneficiary=beneficiary, amount=str(amount),
        )
        self._log.info(
            "Token balance withdrawn",
            operation="withdraw_token",
            token=token.symbol,
            amount=str(amount),
        )
        return amount
