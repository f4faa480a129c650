"""
Ledger Environment

In-process model of one ledger: the execution environment every registry,
peer table, fee token and endpoint lives in. It provides the platform
guarantees the bridge protocol relies on:

    Serialized:    one invocation at a time per ledger (re-entrant lock)
    All-or-nothing: a failing invocation discards every state change and
                   every event it produced, across all components
    Commit hooks:  effects that leave the ledger (transport submission,
                   event bus publication) run only after commit

Invocation model:

    with ledger.transaction():          # or @atomic on a component method
        registry.burn(...)              # snapshot taken on entry
        transport.submit(...)           # deferred via ledger.after_commit
        raise InsufficientPrepaidFee    # every component restored

Identities are Ed25519 keypairs; an address is ``0x`` followed by the last
20 bytes of the SHA-256 of the raw public key.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import copy
import functools
import hashlib
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ccbridge.events import Event, EventBus, EventLog, OwnershipTransferred
from ccbridge.hardening import UnauthorizedCaller, Validators, require_address
from ccbridge.observability import AuditLogger, BridgeLayer, get_logger

F = TypeVar("F", bound=Callable[..., Any])


# =============================================================================
# ACCOUNTS
# =============================================================================

def address_from_public_key(public_key: bytes) -> str:
    """Derive a ledger address from a raw Ed25519 public key."""
    return "0x" + hashlib.sha256(public_key).digest()[-20:].hex()


@dataclass(frozen=True)
class Account:
    """A ledger identity backed by an Ed25519 keypair."""
    address: str
    public_key: bytes
    private_key: Ed25519PrivateKey = field(repr=False, compare=False)

    @classmethod
    def generate(cls) -> "Account":
        private_key = Ed25519PrivateKey.generate()
        public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(
            address=address_from_public_key(public_key),
            public_key=public_key,
            private_key=private_key,
        )


def new_address() -> str:
    """Generate a fresh address for a deployed component."""
    return Account.generate().address


# =============================================================================
# LEDGER
# =============================================================================

class Ledger:
    """
    One ledger environment.

    Components register themselves on construction; ``transaction()``
    snapshots all of them, so a rollback restores the whole ledger.
    Transactions nest: an inner failure restores only what the inner
    block changed, and commit hooks run once, when the outermost block
    commits.
    """

    def __init__(
        self,
        ledger_id: int,
        name: str = "",
        bus: Optional[EventBus] = None,
    ):
        self.ledger_id = Validators.validate_ledger_id(ledger_id).unwrap()
        self.name = name or f"ledger-{ledger_id}"
        self.bus = bus
        self.events = EventLog()
        self.audit = AuditLogger(get_logger(self.name, BridgeLayer.LEDGER))

        self._lock = threading.RLock()
        self._components: List["LedgerComponent"] = []
        self._depth = 0
        self._pending: List[Callable[[], None]] = []
        self._sequence = 0

    def __repr__(self) -> str:
        return f"Ledger(ledger_id={self.ledger_id}, name={self.name!r})"

    @property
    def sequence(self) -> int:
        """Number of committed top-level invocations."""
        return self._sequence

    def register(self, component: "LedgerComponent") -> None:
        with self._lock:
            self._components.append(component)

    @contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """Run a block as one all-or-nothing invocation."""
        with self._lock:
            snapshots = [(c, c.snapshot()) for c in self._components]
            log_mark = self.events.snapshot()
            pending_mark = len(self._pending)
            self._depth += 1
            try:
                yield self
            except BaseException:
                for component, state in snapshots:
                    component.restore(state)
                self.events.restore(log_mark)
                del self._pending[pending_mark:]
                raise
            finally:
                self._depth -= 1

            if self._depth > 0:
                return
            self._sequence += 1
            effects, self._pending = self._pending, []

        for effect in effects:
            effect()

    def after_commit(self, effect: Callable[[], None]) -> None:
        """Run an effect once the current invocation commits (immediately if none is open)."""
        with self._lock:
            if self._depth > 0:
                self._pending.append(effect)
                return
        effect()

    def emit(self, event: Event) -> None:
        """Append an event to the ledger log and publish it after commit."""
        event.ledger_id = self.ledger_id
        self.events.append(event)
        if self.bus is not None:
            self.after_commit(functools.partial(self.bus.publish, event))


def atomic(func: F) -> F:
    """Run a component method as one ledger invocation."""
    @functools.wraps(func)
    def wrapper(self: "LedgerComponent", *args: Any, **kwargs: Any) -> Any:
        with self.ledger.transaction():
            return func(self, *args, **kwargs)
    return wrapper  # type: ignore[return-value]


# =============================================================================
# COMPONENTS
# =============================================================================

class LedgerComponent:
    """
    Base for state that lives on a ledger.

    All mutable state goes in ``self._state`` so the ledger can snapshot
    and restore it.
    """

    def __init__(self, ledger: Ledger, address: Optional[str] = None):
        self.ledger = ledger
        self.address = require_address(address) if address else new_address()
        self._state: Dict[str, Any] = {}
        ledger.register(self)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._state)

    def restore(self, state: Dict[str, Any]) -> None:
        self._state = state

    def emit(self, event: Event) -> None:
        event.emitter = self.address
        self.ledger.emit(event)


class OwnedComponent(LedgerComponent):
    """A ledger component with a single administrative identity."""

    resource_type = "component"

    def __init__(self, ledger: Ledger, admin: str, address: Optional[str] = None):
        super().__init__(ledger, address)
        self._state["admin"] = require_address(admin, "admin")

    @property
    def admin(self) -> str:
        return self._state["admin"]

    def only_admin(self, caller: str, action: str) -> None:
        """Raise UnauthorizedCaller unless caller is the administrative owner."""
        if caller is None or caller.lower() != self.admin:
            self.ledger.audit.log(
                actor=str(caller),
                action=action,
                resource_type=self.resource_type,
                resource_id=self.address,
                outcome="denied",
            )
            raise UnauthorizedCaller(f"{action}: caller {caller} is not the administrative owner")

    def audit_success(self, caller: str, action: str, **details: Any) -> None:
        """Record a successful administrative action once the invocation commits."""
        self.ledger.after_commit(functools.partial(
            self.ledger.audit.log,
            actor=caller,
            action=action,
            resource_type=self.resource_type,
            resource_id=self.address,
            outcome="success",
            **details,
        ))

    @atomic
    def transfer_ownership(self, new_admin: str, caller: str) -> None:
        self.only_admin(caller, "transfer_ownership")
        new_admin = require_address(new_admin, "new_admin")
        previous = self.admin
        self._state["admin"] = new_admin
        self.emit(OwnershipTransferred(previous_owner=previous, new_owner=new_admin))
        self.audit_success(caller, "transfer_ownership", new_admin=new_admin)
