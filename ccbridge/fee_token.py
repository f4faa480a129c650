"""Prepaid fee token.

The transport is paid in a fungible token held on the origin ledger (LINK in
the original deployment). Endpoints hold a prepaid balance; each send
approves the transport's router for exactly the quoted fee and the router
collects it with ``transfer_from`` in the same invocation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from ccbridge.events import TokenApproval, TokenTransfer
from ccbridge.hardening import (
    InsufficientAllowance,
    InsufficientBalance,
    Validators,
    require_address,
)
from ccbridge.ledger import Ledger, OwnedComponent, atomic

ZERO = Decimal("0")


class FeeToken(OwnedComponent):
    """Minimal fungible balance ledger used to pay transport fees."""

    resource_type = "fee_token"

    def __init__(
        self,
        ledger: Ledger,
        admin: str,
        symbol: str = "LINK",
        address: Optional[str] = None,
    ):
        super().__init__(ledger, admin, address)
        self.symbol = symbol
        self._state["balances"] = {}
        self._state["allowances"] = {}

    def balance_of(self, holder: str) -> Decimal:
        return self._state["balances"].get(require_address(holder, "holder"), ZERO)

    def allowance(self, owner: str, spender: str) -> Decimal:
        key = (require_address(owner, "owner"), require_address(spender, "spender"))
        return self._state["allowances"].get(key, ZERO)

    def total_supply(self) -> Decimal:
        return sum(self._state["balances"].values(), ZERO)

    def _amount(self, amount) -> Decimal:
        return Validators.validate_amount(amount).unwrap()

    def _move(self, sender: str, recipient: str, amount: Decimal) -> None:
        balances = self._state["balances"]
        available = balances.get(sender, ZERO)
        if available < amount:
            raise InsufficientBalance(
                f"{self.symbol}: balance {available} of {sender} is below {amount}"
            )
        balances[sender] = available - amount
        balances[recipient] = balances.get(recipient, ZERO) + amount
        self.emit(TokenTransfer(
            token=self.symbol, sender=sender, recipient=recipient, amount=str(amount),
        ))

    @atomic
    def mint(self, to: str, amount, caller: str) -> None:
        """Faucet: credit ``to`` with newly issued tokens (admin only)."""
        self.only_admin(caller, "mint_fee_token")
        to = require_address(to, "to")
        amount = self._amount(amount)
        balances = self._state["balances"]
        balances[to] = balances.get(to, ZERO) + amount
        self.emit(TokenTransfer(token=self.symbol, sender="", recipient=to, amount=str(amount)))

    @atomic
    def transfer(self, recipient: str, amount, caller: str) -> None:
        self._move(
            require_address(caller, "caller"),
            require_address(recipient, "recipient"),
            self._amount(amount),
        )

    @atomic
    def approve(self, spender: str, amount, caller: str) -> None:
        owner = require_address(caller, "caller")
        spender = require_address(spender, "spender")
        amount = self._amount(amount)
        self._state["allowances"][(owner, spender)] = amount
        self.emit(TokenApproval(token=self.symbol, owner=owner, spender=spender, amount=str(amount)))

    @atomic
    def transfer_from(self, owner: str, recipient: str, amount, caller: str) -> None:
        owner = require_address(owner, "owner")
        spender = require_address(caller, "caller")
        amount = self._amount(amount)
        allowed = self._state["allowances"].get((owner, spender), ZERO)
        if allowed < amount:
            raise InsufficientAllowance(
                f"{self.symbol}: allowance {allowed} from {owner} to {spender} is below {amount}"
            )
        self._state["allowances"][(owner, spender)] = allowed - amount
        self._move(owner, require_address(recipient, "recipient"), amount)
