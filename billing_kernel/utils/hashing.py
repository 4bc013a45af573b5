"""
Deterministic hashing for the audit trail and configuration checksums.

Every hash produced here must be reproducible from the stored data alone,
so ``validate_chain`` can recompute it years later.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """Serialize the non-JSON types that appear in billing payloads."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        # 10.00 and 10 must hash identically
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to a canonical JSON string.

    Keys sorted, no whitespace, Decimal/datetime/UUID/Enum rendered
    consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash of an audit event.

    ``SHA256(entity_type|entity_id|action|payload_hash|prev_hash)`` where the
    first event in the chain uses the literal ``GENESIS`` as its prev_hash.
    """
    data = "|".join((
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or GENESIS_MARKER,
    ))
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
