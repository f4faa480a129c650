"""
In-memory transport tests: fee collection, commit-gated release and delivery control.
"""

from decimal import Decimal

import pytest

from ccbridge.config import get_config_manager
from ccbridge.fee_token import FeeToken
from ccbridge.hardening import InsufficientAllowance
from ccbridge.ledger import Account, Ledger
from ccbridge.transport import (
    DeliveryOutcome,
    FeeAuthorization,
    InMemoryTransport,
    PayloadTooLarge,
    TransportError,
    UnsupportedDestination,
)


class Boom(Exception):
    pass


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def source(transport):
    ledger = Ledger(1, name="source")
    return ledger, transport.attach(ledger)


@pytest.fixture
def destination(transport):
    ledger = Ledger(2, name="destination")
    return ledger, transport.attach(ledger, fee_multiplier=Decimal("2"))


@pytest.fixture
def funded(source, admin, holder):
    ledger, router = source
    token = FeeToken(ledger, admin.address)
    token.mint(holder.address, "10", caller=admin.address)
    token.approve(router.address, "10", caller=holder.address)
    return token


@pytest.fixture
def inbox(transport, destination):
    received = []
    target = Account.generate().address

    def handler(envelope, caller):
        received.append((envelope, caller))

    transport.register_receiver(2, target, handler)
    return target, received


def submit(router, token, payer, target, payload=b"hello"):
    return router.submit(
        payer, 2, target, payload,
        FeeAuthorization(token=token, payer=payer, amount=router.quote_fee(2, payload)),
    )


class TestQuoting:

    def test_quote_uses_destination_multiplier(self, source, destination):
        _, router = source
        expected = (Decimal("0.05") + Decimal("0.0001") * 5) * Decimal("2")
        assert router.quote_fee(2, b"hello") == expected

    def test_unknown_destination(self, source):
        _, router = source
        with pytest.raises(UnsupportedDestination):
            router.quote_fee(99, b"x")

    def test_same_ledger_rejected(self, source):
        _, router = source
        with pytest.raises(UnsupportedDestination):
            router.quote_fee(1, b"x")

    def test_payload_limit(self, source, destination):
        _, router = source
        get_config_manager().set("transport.max_payload_bytes", 4)
        with pytest.raises(PayloadTooLarge):
            router.quote_fee(2, b"hello")

    def test_double_attach_rejected(self, transport, source):
        ledger, _ = source
        with pytest.raises(TransportError, match="already attached"):
            transport.attach(ledger)


class TestSubmission:

    def test_submit_collects_fee(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        target, _ = inbox
        fee = router.quote_fee(2, b"hello")

        submit(router, funded, holder.address, target)

        assert funded.balance_of(holder.address) == Decimal("10") - fee
        assert funded.balance_of(router.address) == fee
        assert len(transport.pending()) == 1

    def test_submit_without_allowance(self, transport, source, destination, admin, stranger, inbox):
        ledger, router = source
        token = FeeToken(ledger, admin.address)
        token.mint(stranger.address, "10", caller=admin.address)
        target, _ = inbox

        with pytest.raises(InsufficientAllowance):
            submit(router, token, stranger.address, target)
        assert transport.pending() == []

    def test_rolled_back_submission_never_released(self, transport, source, destination, funded, holder, inbox):
        ledger, router = source
        target, _ = inbox

        with pytest.raises(Boom):
            with ledger.transaction():
                submit(router, funded, holder.address, target)
                assert transport.pending() == []
                raise Boom()

        assert transport.pending() == []
        assert funded.balance_of(holder.address) == Decimal("10")

    def test_fee_token_must_live_on_source(self, transport, source, destination, admin, holder, inbox):
        dest_ledger, _ = destination
        _, router = source
        foreign = FeeToken(dest_ledger, admin.address)
        target, _ = inbox

        with pytest.raises(TransportError, match="source ledger"):
            router.submit(holder.address, 2, target, b"x", FeeAuthorization(foreign, holder.address, Decimal("1")))


class TestDelivery:

    def test_deliver_invokes_receiver_as_router(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        _, dest_router = destination
        target, received = inbox
        message_id = submit(router, funded, holder.address, target)

        report = transport.deliver(message_id)

        assert report.ok
        assert report.attempt == 1
        envelope, caller = received[0]
        assert envelope.message_id == message_id
        assert envelope.payload == b"hello"
        assert envelope.sender == holder.address
        assert caller == dest_router.address
        assert transport.pending() == []

    def test_deliver_unknown_message(self, transport):
        with pytest.raises(TransportError, match="not in flight"):
            transport.deliver("0xdead")

    def test_redeliver_duplicates(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        target, received = inbox
        message_id = submit(router, funded, holder.address, target)

        transport.deliver(message_id)
        report = transport.redeliver(message_id)

        assert report.attempt == 2
        assert len(received) == 2
        assert [r.attempt for r in transport.reports(message_id)] == [1, 2]

    def test_drop_loses_message(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        target, received = inbox
        message_id = submit(router, funded, holder.address, target)

        envelope = transport.drop(message_id)

        assert envelope.message_id == message_id
        assert transport.pending() == []
        assert transport.deliver_all() == []
        assert received == []

    def test_deliver_all_shuffled_is_reproducible(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        target, received = inbox
        ids = [submit(router, funded, holder.address, target, payload=bytes([i])) for i in range(6)]

        transport.deliver_all(shuffle=True, seed=7)
        first_order = [e.message_id for e, _ in received]
        assert sorted(first_order) == sorted(ids)

        received.clear()
        for mid in ids:
            transport.enqueue(transport.envelope(mid))
        transport.deliver_all(shuffle=True, seed=7)
        assert [e.message_id for e, _ in received] == first_order

    def test_no_receiver(self, transport, source, destination, funded, holder):
        _, router = source
        message_id = submit(router, funded, holder.address, Account.generate().address)

        report = transport.deliver(message_id)
        assert report.outcome == DeliveryOutcome.NO_RECEIVER

    def test_report_listeners(self, transport, source, destination, funded, holder, inbox):
        _, router = source
        target, _ = inbox
        seen = []
        transport.on_report(seen.append)

        message_id = submit(router, funded, holder.address, target)
        transport.deliver(message_id)

        assert [r.message_id for r in seen] == [message_id]
        assert seen[0].to_dict()["outcome"] == "delivered"
