"""
ccbridge: Cross-Ledger Burn-and-Mint Asset Bridge

Moves uniquely identified, metadata-bearing assets between independent
ledgers. An asset is destroyed on the origin ledger and recreated with the
same id and metadata on the destination ledger, carried by an untrusted,
asynchronous message transport.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          CROSS-LEDGER BRIDGE                             │
    │                                                                          │
    │  PROTOCOL                                                                │
    │    endpoint.py    Send (burn + submit) and receive (auth + mint)        │
    │    registry.py    Asset records, delegated burn, single minter          │
    │    peers.py       Trusted remote endpoint per ledger                    │
    │    fees.py        Transport cost estimation                             │
    │    codec.py       Canonical transfer message, schema-checked decoding   │
    │                                                                          │
    │  ENVIRONMENT                                                             │
    │    ledger.py      Serialized, all-or-nothing ledger invocations         │
    │    fee_token.py   Prepaid fee token                                     │
    │    transport.py   Unordered, duplicating, lossy in-memory transport     │
    │    network.py     Multi-ledger deployment wiring                        │
    │                                                                          │
    │  OPERATIONS                                                              │
    │    lifecycle.py   Transfer journal and stuck-transfer detection         │
    │    events.py      Ledger event log and event bus                        │
    │    config.py      YAML / environment configuration                      │
    │    observability.py  Structured logging and audit trail                 │
    │    hardening.py   Error taxonomy and input validation                   │
    │    cli.py         Command-line interface                                │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Conservation: For any asset id, at most one ledger holds the asset at
    any instant. Burn precedes submission; mint never overwrites.

    Fail Closed: Messages from anything other than the configured peer are
    rejected before any state changes. Unconfigured destinations quote zero
    and cannot be sent to.

    No Hidden Recovery: The core never retries. Lost or rejected deliveries
    leave the transfer stuck and visible to operators.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import bridge modules on first access."""

    if name in ("BridgeEndpoint", "EndpointConfig"):
        from ccbridge import endpoint
        return getattr(endpoint, name)

    if name in ("AssetRegistry", "AssetRecord"):
        from ccbridge import registry
        return getattr(registry, name)

    if name in ("PeerRegistry", "PeerStatus"):
        from ccbridge import peers
        return getattr(peers, name)

    if name == "FeeEstimator":
        from ccbridge import fees
        return fees.FeeEstimator

    if name in ("TransferMessage", "encode_transfer_message", "decode_transfer_message"):
        from ccbridge import codec
        return getattr(codec, name)

    if name in ("Ledger", "Account", "atomic"):
        from ccbridge import ledger
        return getattr(ledger, name)

    if name == "FeeToken":
        from ccbridge import fee_token
        return fee_token.FeeToken

    if name in ("InMemoryTransport", "Envelope", "FeeAuthorization", "DeliveryReport",
                "DeliveryOutcome", "MessageTransport"):
        from ccbridge import transport
        return getattr(transport, name)

    if name in ("BridgeNetwork", "deploy_bridge"):
        from ccbridge import network
        return getattr(network, name)

    if name in ("TransferTracker", "TransferRecord", "TransferState"):
        from ccbridge import lifecycle
        return getattr(lifecycle, name)

    if name in ("Sent", "Received", "EventBus", "EventLog"):
        from ccbridge import events
        return getattr(events, name)

    raise AttributeError(f"module 'ccbridge' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Protocol
    "BridgeEndpoint",
    "EndpointConfig",
    "AssetRegistry",
    "AssetRecord",
    "PeerRegistry",
    "PeerStatus",
    "FeeEstimator",
    "TransferMessage",
    # Environment
    "Ledger",
    "Account",
    "FeeToken",
    "InMemoryTransport",
    "Envelope",
    "DeliveryReport",
    "deploy_bridge",
    "BridgeNetwork",
    # Operations
    "TransferTracker",
    "TransferState",
    "Sent",
    "Received",
]
