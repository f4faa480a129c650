"""
Asset Registry

One registry per ledger. It owns the asset records of that ledger and
exposes the two state transitions the bridge is built on:

    mint(to, id, uri)   only the authorized minter (the local bridge
                        endpoint); never overwrites an existing id
    burn(id)            the owner, or an identity the owner approved

The ``DuplicateAsset`` failure on mint is the idempotency backstop of the
whole protocol: a transfer message delivered twice can never produce two
assets, because the second mint for the same id fails.

The approval surface is limited to what delegated burn needs: per-asset
approval and operator approval. Holder-to-holder transfers are not part
of this registry.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ccbridge.events import (
    Approval,
    ApprovalForAll,
    AssetBurned,
    AssetMinted,
    MinterChanged,
)
from ccbridge.hardening import (
    AssetNotFound,
    DuplicateAsset,
    NotOwner,
    NotOwnerOrApproved,
    UnauthorizedCaller,
    Validators,
    require_address,
)
from ccbridge.ledger import Ledger, OwnedComponent, atomic
from ccbridge.observability import BridgeLayer, get_logger


@dataclass(frozen=True)
class AssetRecord:
    """Read-only view of one asset on one ledger."""
    id: int
    owner: str
    metadata_uri: str
    exists: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "metadata_uri": self.metadata_uri,
            "exists": self.exists,
        }


class AssetRegistry(OwnedComponent):
    """
    Registry of uniquely identified, metadata-bearing assets.

    Example:
        registry = AssetRegistry(ledger, admin=admin.address, name="CrossChainNFT")
        registry.set_minter(endpoint.address, caller=admin.address)
        registry.mint(holder, 1, "ipfs://meta/1", caller=endpoint.address)
    """

    resource_type = "asset_registry"

    def __init__(
        self,
        ledger: Ledger,
        admin: str,
        name: str = "CrossChainNFT",
        symbol: str = "CCNFT",
        minter: Optional[str] = None,
        address: Optional[str] = None,
    ):
        super().__init__(ledger, admin, address)
        self.name = name
        self.symbol = symbol
        self._log = get_logger(f"{ledger.name}.{symbol}", BridgeLayer.REGISTRY)
        # Until a minter is configured the admin may mint (initialization override).
        self._state["minter"] = require_address(minter, "minter") if minter else self.admin
        self._state["assets"] = {}
        self._state["approvals"] = {}
        self._state["operators"] = {}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def minter(self) -> str:
        return self._state["minter"]

    def exists(self, asset_id: int) -> bool:
        return asset_id in self._state["assets"]

    def get(self, asset_id: int) -> Optional[AssetRecord]:
        entry = self._state["assets"].get(asset_id)
        if entry is None:
            return None
        return AssetRecord(id=asset_id, owner=entry["owner"], metadata_uri=entry["metadata_uri"])

    def _require(self, asset_id: int) -> Dict[str, str]:
        entry = self._state["assets"].get(asset_id)
        if entry is None:
            raise AssetNotFound(f"Asset {asset_id} does not exist on ledger {self.ledger.ledger_id}")
        return entry

    def owner_of(self, asset_id: int) -> str:
        return self._require(asset_id)["owner"]

    def metadata_uri(self, asset_id: int) -> str:
        return self._require(asset_id)["metadata_uri"]

    def balance_of(self, holder: str) -> int:
        holder = require_address(holder, "holder")
        return sum(1 for e in self._state["assets"].values() if e["owner"] == holder)

    def assets_of(self, holder: str) -> List[int]:
        holder = require_address(holder, "holder")
        return sorted(i for i, e in self._state["assets"].items() if e["owner"] == holder)

    def total_supply(self) -> int:
        return len(self._state["assets"])

    def get_approved(self, asset_id: int) -> Optional[str]:
        self._require(asset_id)
        return self._state["approvals"].get(asset_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        owner = require_address(owner, "owner")
        operator = require_address(operator, "operator")
        return operator in self._state["operators"].get(owner, set())

    def is_owner_or_approved(self, asset_id: int, spender: str) -> bool:
        owner = self.owner_of(asset_id)
        spender = spender.lower()
        return (
            spender == owner
            or self._state["approvals"].get(asset_id) == spender
            or spender in self._state["operators"].get(owner, set())
        )

    # -------------------------------------------------------------------------
    # Approvals
    # -------------------------------------------------------------------------

    @atomic
    def approve(self, spender: Optional[str], asset_id: int, caller: str) -> None:
        """Approve ``spender`` to burn ``asset_id``; ``None`` clears the approval."""
        owner = self.owner_of(asset_id)
        caller = require_address(caller, "caller")
        if caller != owner and caller not in self._state["operators"].get(owner, set()):
            raise NotOwner(f"Caller {caller} may not approve asset {asset_id}")

        if spender is None:
            self._state["approvals"].pop(asset_id, None)
            approved = ""
        else:
            approved = require_address(spender, "spender")
            self._state["approvals"][asset_id] = approved
        self.emit(Approval(asset_id=asset_id, owner=owner, approved=approved))

    @atomic
    def set_approval_for_all(self, operator: str, approved: bool, caller: str) -> None:
        owner = require_address(caller, "caller")
        operator = require_address(operator, "operator")
        operators = self._state["operators"].setdefault(owner, set())
        if approved:
            operators.add(operator)
        else:
            operators.discard(operator)
        self.emit(ApprovalForAll(owner=owner, operator=operator, approved=approved))

    # -------------------------------------------------------------------------
    # Mint / burn
    # -------------------------------------------------------------------------

    @atomic
    def mint(self, to: str, asset_id: int, metadata_uri: str, caller: str) -> AssetRecord:
        """
        Create an asset record.

        Raises:
            UnauthorizedCaller: caller is not the authorized minter.
            DuplicateAsset: the id already exists on this ledger.
        """
        if caller is None or caller.lower() != self.minter:
            raise UnauthorizedCaller(f"Caller {caller} is not the authorized minter")
        to = require_address(to, "to")
        Validators.validate_asset_id(asset_id).raise_if_invalid()
        Validators.validate_metadata_uri(metadata_uri).raise_if_invalid()

        if asset_id in self._state["assets"]:
            raise DuplicateAsset(f"Asset {asset_id} already exists on ledger {self.ledger.ledger_id}")

        self._state["assets"][asset_id] = {"owner": to, "metadata_uri": metadata_uri}
        self.emit(AssetMinted(asset_id=asset_id, to=to, metadata_uri=metadata_uri))
        self._log.debug("Asset minted", operation="mint", asset_id=asset_id, to=to)
        return AssetRecord(id=asset_id, owner=to, metadata_uri=metadata_uri)

    @atomic
    def burn(self, asset_id: int, caller: str) -> None:
        """
        Destroy an asset record permanently.

        Raises:
            AssetNotFound: the id does not exist.
            NotOwnerOrApproved: caller is neither the owner nor approved.
        """
        entry = self._require(asset_id)
        if caller is None or not self.is_owner_or_approved(asset_id, caller):
            raise NotOwnerOrApproved(
                f"Caller {caller} is not owner or approved for asset {asset_id}"
            )

        del self._state["assets"][asset_id]
        self._state["approvals"].pop(asset_id, None)
        self.emit(AssetBurned(asset_id=asset_id, owner=entry["owner"], burned_by=caller.lower()))
        self._log.debug("Asset burned", operation="burn", asset_id=asset_id, owner=entry["owner"])

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    @atomic
    def set_minter(self, minter: str, caller: str) -> None:
        self.only_admin(caller, "set_minter")
        minter = require_address(minter, "minter")
        previous = self.minter
        self._state["minter"] = minter
        self.emit(MinterChanged(previous_minter=previous, new_minter=minter))
        self.audit_success(caller, "set_minter", previous_minter=previous, new_minter=minter)
        self._log.info("Minter changed", operation="set_minter", new_minter=minter)
