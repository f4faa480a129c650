"""
Bridge Validation and Hardening Module

Error taxonomy, input validation and small cryptographic helpers shared by
every component of the bridge.

Error Taxonomy:

    AuthorizationError   NotOwner, NotOwnerOrApproved,
                         UnauthorizedCaller, UnauthorizedSource
    StateError           DuplicateAsset, AssetNotFound, MalformedMessage
    ConfigurationError   PeerNotConfigured
    ResourceError        InsufficientPrepaidFee, InsufficientBalance,
                         InsufficientAllowance

Every error aborts the invocation that raised it. Only resource errors are
transient: the caller may top up a balance and retry.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import hmac
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Set, Union


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================

class BridgeError(Exception):
    """Base exception for protocol failures."""

    code = "bridge_error"
    transient = False

    def __init__(self, message: str = ""):
        self.message = message or self.code
        super().__init__(self.message)


class AuthorizationError(BridgeError):
    """Caller or message origin is not permitted to perform the operation."""
    code = "authorization"


class StateError(BridgeError):
    """Operation conflicts with current ledger state."""
    code = "state"


class ConfigurationError(BridgeError):
    """Endpoint is missing required configuration."""
    code = "configuration"


class ResourceError(BridgeError):
    """Insufficient funds for the operation. Retryable after a top-up."""
    code = "resource"
    transient = True


class NotOwner(AuthorizationError):
    code = "not_owner"


class NotOwnerOrApproved(AuthorizationError):
    code = "not_owner_or_approved"


class UnauthorizedCaller(AuthorizationError):
    code = "unauthorized_caller"


class UnauthorizedSource(AuthorizationError):
    code = "unauthorized_source"


class DuplicateAsset(StateError):
    code = "duplicate_asset"


class AssetNotFound(StateError):
    code = "asset_not_found"


class MalformedMessage(StateError):
    code = "malformed_message"


class PeerNotConfigured(ConfigurationError):
    code = "peer_not_configured"


class InsufficientPrepaidFee(ResourceError):
    """Endpoint's held fee balance is below the transport quote."""
    code = "insufficient_prepaid_fee"

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient prepaid fee: required {required}, available {available}"
        )


class InsufficientBalance(ResourceError):
    code = "insufficient_balance"


class InsufficientAllowance(ResourceError):
    code = "insufficient_allowance"


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(Exception):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


class InvariantViolation(Exception):
    """State machine invariant violated."""
    pass


@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise ValidationErrors if validation failed."""
        if not self.is_valid:
            raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value, raising if validation failed."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX40_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')
    URI_SCHEME_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.-]*:')

    ZERO_ADDRESS = "0x" + "0" * 40

    MAX_URI_LENGTH = 2048
    MAX_LEDGER_ID = 2 ** 64 - 1
    MAX_ASSET_ID = 2 ** 256 - 1

    @classmethod
    def validate_address(
        cls,
        value: Any,
        field_name: str = "address",
        allow_zero: bool = False,
    ) -> ValidationResult:
        """Validate a ledger address (0x + 40 hex), normalized to lowercase."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])

        lower = value.strip().lower()
        if not cls.HEX40_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a valid address (0x + 40 hex)", value)
            ])

        if lower == cls.ZERO_ADDRESS and not allow_zero:
            return ValidationResult.failure([
                ValidationError(field_name, "Zero address is not a valid identity", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_ledger_id(cls, value: Any, field_name: str = "ledger_id") -> ValidationResult:
        """Validate a ledger selector (unsigned 64-bit)."""
        return cls._validate_uint(value, field_name, cls.MAX_LEDGER_ID, minimum=1)

    @classmethod
    def validate_asset_id(cls, value: Any, field_name: str = "asset_id") -> ValidationResult:
        """Validate an asset id (unsigned 256-bit)."""
        return cls._validate_uint(value, field_name, cls.MAX_ASSET_ID, minimum=0)

    @classmethod
    def _validate_uint(
        cls,
        value: Any,
        field_name: str,
        maximum: int,
        minimum: int = 0,
    ) -> ValidationResult:
        # bool is an int subclass and never a valid identifier
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < minimum or value > maximum:
            return ValidationResult.failure([
                ValidationError(field_name, f"Out of range [{minimum}, {maximum}]", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_metadata_uri(cls, value: Any, field_name: str = "metadata_uri") -> ValidationResult:
        """Validate a metadata URI. Empty URIs are allowed; null bytes are not."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])
        errors = []
        if "\x00" in value:
            errors.append(ValidationError(field_name, "Contains null bytes", value))
        if len(value) > cls.MAX_URI_LENGTH:
            errors.append(ValidationError(field_name, f"Too long (max {cls.MAX_URI_LENGTH} chars)", value))
        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_amount(cls, value: Any, field_name: str = "amount") -> ValidationResult:
        """Validate a non-negative, finite token amount."""
        try:
            if isinstance(value, Decimal):
                amount = value
            elif isinstance(value, (int, str)) and not isinstance(value, bool):
                amount = Decimal(value)
            elif isinstance(value, float):
                amount = Decimal(str(value))
            else:
                return ValidationResult.failure([
                    ValidationError(field_name, f"Cannot convert {type(value).__name__} to Decimal", value)
                ])
        except InvalidOperation:
            return ValidationResult.failure([
                ValidationError(field_name, "Invalid decimal value", value)
            ])

        if not amount.is_finite():
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a finite number", value)
            ])
        if amount < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Cannot be negative", value)
            ])
        return ValidationResult.success(amount)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions."""

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(a.encode(), b.encode())

    @staticmethod
    def hash_sha256(data: Union[str, bytes]) -> str:
        """Compute SHA256 hash."""
        if isinstance(data, str):
            data = data.encode()
        return hashlib.sha256(data).hexdigest()


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}"
            )


def require_address(value: Any, field_name: str = "address") -> str:
    """Validate and normalize an address, raising ValidationErrors on failure."""
    return Validators.validate_address(value, field_name).unwrap()
