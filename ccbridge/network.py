"""
In-process bridge deployment.

Wires any number of ledgers into one simulated bridge: on each ledger an
asset registry, a peer registry, a prepaid fee token and an endpoint that
is the registry's minter; every endpoint is registered as a transport
receiver and trusts every other endpoint as its peer.

Example:
    network = deploy_bridge(["avalanche-fuji", "arbitrum-sepolia"], prepaid="10")
    fuji, arb = network["avalanche-fuji"], network["arbitrum-sepolia"]
    fuji.endpoint.issue(holder, 1, "ipfs://meta/1", caller=network.admin.address)
    message_id = network.transfer("avalanche-fuji", "arbitrum-sepolia", holder, holder, 1)
    network.transport.deliver(message_id)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Union

from ccbridge.config import BridgeSettings, LedgerProfile, get_config, get_ledger_profile
from ccbridge.endpoint import BridgeEndpoint, EndpointConfig
from ccbridge.events import EventBus
from ccbridge.fee_token import FeeToken
from ccbridge.hardening import Validators
from ccbridge.ledger import Account, Ledger
from ccbridge.lifecycle import TransferTracker
from ccbridge.peers import PeerRegistry
from ccbridge.registry import AssetRegistry
from ccbridge.transport import InMemoryTransport, LedgerRouter

LedgerSpec = Union[str, LedgerProfile]


@dataclass
class BridgeDeployment:
    """Everything deployed on one ledger."""
    profile: LedgerProfile
    ledger: Ledger
    router: LedgerRouter
    registry: AssetRegistry
    peers: PeerRegistry
    fee_token: FeeToken
    endpoint: BridgeEndpoint

    @property
    def ledger_id(self) -> int:
        return self.ledger.ledger_id


@dataclass
class BridgeNetwork:
    """A set of bridged ledgers sharing one transport, event bus and tracker."""
    admin: Account
    transport: InMemoryTransport
    bus: EventBus
    tracker: TransferTracker
    deployments: Dict[int, BridgeDeployment] = field(default_factory=dict)

    def __getitem__(self, key: Union[int, str]) -> BridgeDeployment:
        if isinstance(key, str):
            for deployment in self.deployments.values():
                if deployment.profile.name == key:
                    return deployment
            raise KeyError(key)
        return self.deployments[key]

    def __iter__(self) -> Iterator[BridgeDeployment]:
        return iter(self.deployments.values())

    def fund(self, key: Union[int, str], amount) -> None:
        """Top up an endpoint's prepaid fee balance from the token faucet."""
        deployment = self[key]
        deployment.fee_token.mint(deployment.endpoint.address, amount, caller=self.admin.address)

    def transfer(
        self,
        source: Union[int, str],
        destination: Union[int, str],
        holder: str,
        receiver: str,
        asset_id: int,
    ) -> str:
        """Approve the source endpoint for ``asset_id`` if needed, then send it."""
        origin = self[source]
        target = self[destination]
        endpoint = origin.endpoint
        if origin.registry.get_approved(asset_id) != endpoint.address:
            origin.registry.approve(endpoint.address, asset_id, caller=holder)
        return endpoint.send(target.ledger_id, receiver, asset_id, caller=holder)

    def locate(self, asset_id: int) -> List[int]:
        """Ledger ids on which ``asset_id`` currently exists."""
        return [d.ledger_id for d in self if d.registry.exists(asset_id)]


def _resolve_profile(spec: LedgerSpec) -> LedgerProfile:
    if isinstance(spec, LedgerProfile):
        return spec
    return get_ledger_profile(spec)


def deploy_bridge(
    ledgers: Sequence[LedgerSpec],
    admin: Optional[Account] = None,
    settings: Optional[BridgeSettings] = None,
    prepaid=Decimal("0"),
    stuck_after_seconds: Optional[int] = None,
) -> BridgeNetwork:
    """Deploy and fully connect a bridge across ``ledgers``."""
    profiles = [_resolve_profile(spec) for spec in ledgers]
    if len(profiles) < 2:
        raise ValueError("A bridge needs at least two ledgers")
    if len({p.selector for p in profiles}) != len(profiles):
        raise ValueError("Ledger selectors must be unique")

    prepaid = Validators.validate_amount(prepaid, "prepaid").unwrap()
    settings = settings or get_config()
    admin = admin or Account.generate()
    bus = EventBus()
    transport = InMemoryTransport(settings)
    tracker = TransferTracker(stuck_after_seconds)
    tracker.watch_bus(bus)
    tracker.watch_transport(transport)
    network = BridgeNetwork(admin=admin, transport=transport, bus=bus, tracker=tracker)

    symbol = settings.bridge.fee_token_symbol.get()
    for profile in profiles:
        ledger = Ledger(profile.selector, name=profile.name, bus=bus)
        router = transport.attach(ledger, fee_multiplier=profile.fee_multiplier)
        registry = AssetRegistry(ledger, admin.address)
        peers = PeerRegistry(ledger, admin.address)
        fee_token = FeeToken(ledger, admin.address, symbol=symbol)
        endpoint = BridgeEndpoint(
            ledger,
            EndpointConfig(admin=admin.address),
            registry=registry,
            peers=peers,
            fee_token=fee_token,
            transport=router,
        )
        registry.set_minter(endpoint.address, caller=admin.address)
        transport.register_receiver(ledger.ledger_id, endpoint.address, endpoint.on_message_received)
        network.deployments[ledger.ledger_id] = BridgeDeployment(
            profile=profile,
            ledger=ledger,
            router=router,
            registry=registry,
            peers=peers,
            fee_token=fee_token,
            endpoint=endpoint,
        )

    for deployment in network:
        for remote in network:
            if remote is not deployment:
                deployment.endpoint.set_peer(
                    remote.ledger_id, remote.endpoint.address, caller=admin.address,
                )
        if prepaid > 0:
            network.fund(deployment.ledger_id, prepaid)

    return network
