"""Transfer message codec.

A transfer message is the only thing the bridge puts on the wire:

    {"assetId": <uint256>, "metadataURI": <string>, "receiver": <address>}

Encoding is canonical JSON (sorted keys, compact separators, UTF-8) so that
the same message always has the same bytes, which keeps fee quotes and
digests stable. Decoding is strict: the payload must parse, must conform to
``schemas/transfer-message.schema.json`` and must carry an in-range asset id.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator

from ccbridge.hardening import MalformedMessage, Validators, require_address

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
TRANSFER_MESSAGE_SCHEMA = SCHEMA_DIR / "transfer-message.schema.json"


def _coerce_json_types(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _coerce_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(v) for v in obj]
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, float):
        raise ValueError("floats are not permitted in canonical JSON")
    return obj


def canonical_json(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (no floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@lru_cache(maxsize=1)
def transfer_message_validator() -> Draft202012Validator:
    with open(TRANSFER_MESSAGE_SCHEMA, encoding="utf-8") as f:
        schema = json.load(f)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


@dataclass(frozen=True)
class TransferMessage:
    """Payload carried from the origin endpoint to its peer."""
    receiver: str
    asset_id: int
    metadata_uri: str

    def to_wire(self) -> Dict[str, Any]:
        return {
            "receiver": self.receiver,
            "assetId": self.asset_id,
            "metadataURI": self.metadata_uri,
        }


def encode_transfer_message(message: TransferMessage) -> bytes:
    """Encode a transfer message after validating its fields."""
    wire = message.to_wire()
    wire["receiver"] = require_address(message.receiver, "receiver")
    Validators.validate_asset_id(message.asset_id).raise_if_invalid()
    Validators.validate_metadata_uri(message.metadata_uri).raise_if_invalid()
    return canonical_json(wire)


def decode_transfer_message(payload: bytes) -> TransferMessage:
    """Decode and validate a transfer message payload.

    Raises:
        MalformedMessage: the payload is not valid JSON, does not match the
            schema, or carries an asset id outside the uint256 range.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except (ValueError, RecursionError) as e:
        raise MalformedMessage(f"Payload is not valid JSON: {e}") from e

    errors = sorted(transfer_message_validator().iter_errors(data), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(
            f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
        )
        raise MalformedMessage(f"Payload does not match transfer message schema: {details}")

    if not Validators.validate_asset_id(data["assetId"]).is_valid:
        raise MalformedMessage(f"assetId out of range: {data['assetId']}")
    if data["receiver"] == Validators.ZERO_ADDRESS:
        raise MalformedMessage("receiver is the zero address")

    return TransferMessage(
        receiver=data["receiver"],
        asset_id=data["assetId"],
        metadata_uri=data["metadataURI"],
    )
