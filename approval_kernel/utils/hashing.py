"""
Canonical JSON and SHA-256 helpers.

Audit rows are chained by hash and workflow files are fingerprinted by
checksum, so both must produce the same digest in every process: keys
sorted, no whitespace, enums by value, timestamps in ISO form.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"
_FIELD_SEPARATOR = "|"


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    # Decimal as its exact string; a float would lose cents.
    if isinstance(value, Decimal):
        return str(value)
    # datetime is a date subclass
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"{type(value).__name__} has no canonical JSON form")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_compatible(data: Any) -> Any:
    """Round-trip ``data`` through canonical JSON: what a JSON column stores."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_id: Any,
    action: str,
    seq: int,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash of one audit row.

    The first row of a chain links to ``GENESIS_MARKER`` instead of a
    previous hash.  Changing any field of any earlier row changes every
    hash after it.
    """
    link = prev_hash if prev_hash is not None else GENESIS_MARKER
    return _sha256(_FIELD_SEPARATOR.join((str(entity_id), action, str(seq), payload_hash, link)))
