"""
Bridge endpoint send path.

Every failed precondition must leave the asset unburned, the fee balance
untouched and nothing in flight.
"""

from decimal import Decimal

import pytest

from ccbridge.codec import decode_transfer_message
from ccbridge.events import AssetBurned, Sent
from ccbridge.hardening import (
    AssetNotFound,
    DuplicateAsset,
    InsufficientPrepaidFee,
    NotOwner,
    NotOwnerOrApproved,
    PeerNotConfigured,
    ResourceError,
    UnauthorizedCaller,
    ValidationErrors,
)


def assert_untouched(deployment, asset_id, owner, balance):
    assert deployment.registry.exists(asset_id)
    assert deployment.registry.owner_of(asset_id) == owner
    assert deployment.endpoint.prepaid_balance() == balance
    assert deployment.ledger.events.query(Sent) == []
    assert deployment.ledger.events.query(AssetBurned) == []


class TestSendSuccess:

    def test_send_burns_and_submits(self, network, fuji, arbitrum, issued, holder):
        message_id = fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        assert not fuji.registry.exists(issued)
        pending = network.transport.pending()
        assert [e.message_id for e in pending] == [message_id]

        envelope = pending[0]
        assert envelope.sender == fuji.endpoint.address
        assert envelope.receiver == arbitrum.endpoint.address
        assert envelope.source_ledger_id == fuji.ledger_id
        assert envelope.destination_ledger_id == arbitrum.ledger_id

        message = decode_transfer_message(envelope.payload)
        assert message.asset_id == issued
        assert message.metadata_uri == "uri-A"
        assert message.receiver == holder.address

    def test_send_emits_sent(self, fuji, arbitrum, issued, holder):
        message_id = fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        sent = fuji.ledger.events.query(Sent)
        assert len(sent) == 1
        assert sent[0].message_id == message_id
        assert sent[0].destination_ledger_id == arbitrum.ledger_id
        assert sent[0].asset_id == issued
        assert sent[0].metadata_uri == "uri-A"
        assert sent[0].receiver == holder.address
        assert sent[0].emitter == fuji.endpoint.address

    def test_send_pays_quoted_fee(self, fuji, arbitrum, issued, holder):
        quote = fuji.endpoint.estimate_transfer_cost(arbitrum.ledger_id, holder.address, issued)

        fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        assert fuji.endpoint.prepaid_balance() == Decimal("10") - quote
        assert fuji.fee_token.balance_of(fuji.router.address) == quote
        assert fuji.fee_token.allowance(fuji.endpoint.address, fuji.router.address) == 0
        assert Decimal(fuji.ledger.events.query(Sent)[0].fee_paid) == quote

    def test_send_to_other_receiver(self, fuji, arbitrum, issued, holder, stranger):
        fuji.endpoint.send(arbitrum.ledger_id, stranger.address, issued, caller=holder.address)
        assert fuji.ledger.events.query(Sent)[0].receiver == stranger.address

    def test_message_ids_are_unique(self, fuji, arbitrum, admin, holder):
        ids = set()
        for asset_id in (1, 2, 3):
            fuji.endpoint.issue(holder.address, asset_id, "same", caller=admin.address)
            fuji.registry.approve(fuji.endpoint.address, asset_id, caller=holder.address)
            ids.add(fuji.endpoint.send(arbitrum.ledger_id, holder.address, asset_id, caller=holder.address))
        assert len(ids) == 3

    def test_operator_approval_suffices_for_burn(self, fuji, arbitrum, admin, holder):
        fuji.endpoint.issue(holder.address, 5, "u", caller=admin.address)
        fuji.registry.set_approval_for_all(fuji.endpoint.address, True, caller=holder.address)

        fuji.endpoint.send(arbitrum.ledger_id, holder.address, 5, caller=holder.address)
        assert not fuji.registry.exists(5)


class TestSendPreconditions:

    def test_no_peer(self, network, fuji, arbitrum, admin, issued, holder):
        fuji.endpoint.remove_peer(arbitrum.ledger_id, caller=admin.address)

        with pytest.raises(PeerNotConfigured):
            fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        assert_untouched(fuji, issued, holder.address, Decimal("10"))
        assert network.transport.pending() == []

    def test_unknown_destination(self, network, fuji, issued, holder):
        with pytest.raises(PeerNotConfigured):
            fuji.endpoint.send(999, holder.address, issued, caller=holder.address)
        assert_untouched(fuji, issued, holder.address, Decimal("10"))

    def test_non_owner(self, network, fuji, arbitrum, issued, holder, stranger):
        with pytest.raises(NotOwner):
            fuji.endpoint.send(arbitrum.ledger_id, stranger.address, issued, caller=stranger.address)

        assert_untouched(fuji, issued, holder.address, Decimal("10"))
        assert network.transport.pending() == []

    def test_approved_spender_is_not_owner(self, fuji, arbitrum, issued, holder, stranger):
        fuji.registry.approve(stranger.address, issued, caller=holder.address)

        with pytest.raises(NotOwner):
            fuji.endpoint.send(arbitrum.ledger_id, stranger.address, issued, caller=stranger.address)

    def test_missing_asset(self, fuji, arbitrum, holder):
        with pytest.raises(AssetNotFound):
            fuji.endpoint.send(arbitrum.ledger_id, holder.address, 404, caller=holder.address)

    def test_endpoint_not_approved(self, network, fuji, arbitrum, admin, holder):
        fuji.endpoint.issue(holder.address, 8, "u", caller=admin.address)

        with pytest.raises(NotOwnerOrApproved):
            fuji.endpoint.send(arbitrum.ledger_id, holder.address, 8, caller=holder.address)

        assert fuji.registry.owner_of(8) == holder.address
        assert network.transport.pending() == []

    def test_insufficient_prepaid_fee(self, network, fuji, arbitrum, admin, issued, holder):
        fuji.endpoint.withdraw_token(fuji.fee_token, admin.address, caller=admin.address)

        with pytest.raises(InsufficientPrepaidFee) as exc_info:
            fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        assert exc_info.value.transient
        assert isinstance(exc_info.value, ResourceError)
        assert exc_info.value.available == Decimal("0")
        assert exc_info.value.required > 0
        assert_untouched(fuji, issued, holder.address, Decimal("0"))
        assert network.transport.pending() == []

    def test_retry_after_top_up(self, network, fuji, arbitrum, admin, issued, holder):
        fuji.endpoint.withdraw_token(fuji.fee_token, admin.address, caller=admin.address)
        with pytest.raises(InsufficientPrepaidFee):
            fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        network.fund(fuji.ledger_id, "1")
        message_id = fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)

        assert [e.message_id for e in network.transport.pending()] == [message_id]

    def test_exact_balance_is_enough(self, network, fuji, arbitrum, admin, issued, holder):
        quote = fuji.endpoint.estimate_transfer_cost(arbitrum.ledger_id, holder.address, issued)
        fuji.endpoint.withdraw_token(fuji.fee_token, admin.address, caller=admin.address)
        network.fund(fuji.ledger_id, quote)

        fuji.endpoint.send(arbitrum.ledger_id, holder.address, issued, caller=holder.address)
        assert fuji.endpoint.prepaid_balance() == 0

    def test_invalid_receiver(self, fuji, arbitrum, issued, holder):
        with pytest.raises(ValidationErrors, match="receiver"):
            fuji.endpoint.send(arbitrum.ledger_id, "0x" + "0" * 40, issued, caller=holder.address)
        assert fuji.registry.exists(issued)

    def test_failed_send_is_logged(self, fuji, arbitrum, issued, stranger, caplog):
        with caplog.at_level("WARNING", logger="ccbridge.endpoint"):
            with pytest.raises(NotOwner):
                fuji.endpoint.send(arbitrum.ledger_id, stranger.address, issued, caller=stranger.address)

        failed = [r for r in caplog.records if getattr(r, "operation", "") == "send"]
        assert failed and failed[-1].error_code == "not_owner"


class TestIssuance:

    def test_issue_requires_admin(self, fuji, holder):
        with pytest.raises(UnauthorizedCaller):
            fuji.endpoint.issue(holder.address, 3, "u", caller=holder.address)
        assert not fuji.registry.exists(3)

    def test_in_flight_id_cannot_be_reissued(self, network, fuji, arbitrum, admin, issued, holder):
        network.transfer("avalanche-fuji", "arbitrum-sepolia", holder.address, holder.address, issued)

        with pytest.raises(DuplicateAsset, match="already crossed"):
            fuji.endpoint.issue(holder.address, issued, "copy", caller=admin.address)
        assert network.locate(issued) == []

    def test_received_id_cannot_be_reissued_after_leaving(self, network, fuji, arbitrum, admin, issued, holder):
        message_id = network.transfer("avalanche-fuji", "arbitrum-sepolia", holder.address, holder.address, issued)
        network.transport.deliver(message_id)
        back_id = network.transfer("arbitrum-sepolia", "avalanche-fuji", holder.address, holder.address, issued)

        with pytest.raises(DuplicateAsset):
            arbitrum.endpoint.issue(holder.address, issued, "copy", caller=admin.address)
        network.transport.deliver(back_id)
        assert network.locate(issued) == [fuji.ledger_id]
