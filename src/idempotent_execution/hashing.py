"""Payload selection and hashing for idempotency keys.

The idempotency key is derived from a canonical representation of the
selected payload value, so logically identical payloads always produce the
same key:

1. Select a value from the payload with a dotted path (or take it whole)
2. Serialize it as canonical JSON: sorted keys, compact separators
3. Hash the JSON with the configured hashlib algorithm
"""

import dataclasses
import hashlib
import json
from typing import Any

from pydantic import BaseModel


def extract_path(data: Any, path: str | None) -> Any:
    """Select a value from a payload using a dotted path.

    Segments address mapping keys; integer segments index into lists. A
    missing key or out-of-range index selects ``None``.

    Args:
        data: The payload (mappings, sequences and scalars).
        path: Dotted path such as ``"body.items.0.sku"``, or None for the
            whole payload.

    Returns:
        The selected value, or None if the path does not resolve.

    Examples:
        >>> extract_path({"body": {"order_id": 42}}, "body.order_id")
        42
        >>> extract_path({"items": [{"sku": "A"}]}, "items.0.sku")
        'A'
        >>> extract_path({"body": {}}, "body.order_id") is None
        True
    """
    if path is None:
        return data

    current = to_jsonable(data)
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment in current:
                current = current[segment]
                continue
            # Header-style lookups are case-insensitive
            lowered = {str(k).lower(): v for k, v in current.items()}
            current = lowered.get(segment.lower())
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return None
        else:
            return None

        if current is None:
            return None

    return current


def is_missing_key(value: Any) -> bool:
    """Whether a selected key value should count as "no idempotency key".

    Examples:
        >>> is_missing_key(None), is_missing_key(""), is_missing_key([None, None])
        (True, True, True)
        >>> is_missing_key(0)
        False
    """
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
        return True
    if isinstance(value, (list, tuple)):
        return all(item is None for item in value)
    return False


def to_jsonable(value: Any) -> Any:
    """Convert pydantic models and dataclasses to plain data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def canonical_json(value: Any) -> str:
    """Serialize a value to canonical JSON.

    Uses sorted keys and compact separators for consistent output. Values
    JSON cannot represent natively are rendered with ``str``.
    """
    return json.dumps(
        to_jsonable(value),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def compute_hash(value: Any, algorithm: str = "sha256") -> str:
    """Compute the hex digest of a value's canonical JSON.

    Args:
        value: Any JSON-serializable value (models and dataclasses allowed).
        algorithm: hashlib algorithm name.

    Returns:
        Hexadecimal digest string.

    Examples:
        >>> compute_hash({"b": 1, "a": 2}) == compute_hash({"a": 2, "b": 1})
        True
    """
    digest = hashlib.new(algorithm)
    digest.update(canonical_json(value).encode("utf-8"))
    return digest.hexdigest()


def digest_bytes(data: bytes, algorithm: str = "sha256") -> str:
    """Hex digest of raw bytes, e.g. an HTTP request body."""
    return hashlib.new(algorithm, data).hexdigest()
