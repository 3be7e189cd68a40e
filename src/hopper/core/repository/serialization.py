# src/hopper/core/repository/serialization.py
"""Type-preserving JSON serialization for step execution contexts.

Readers store their restart position (and anything else they like) in the
ExecutionContext, which is persisted as JSON with every chunk commit.

The problem: Standard json.dumps() cannot serialize datetime objects.
The solution: Collision-safe type envelopes with ``__hopper_type__`` and
``__hopper_value__`` keys. User dicts that coincidentally contain the reserved
key ``__hopper_type__`` are escaped before encoding, so they are never
mistaken for an envelope on load.

This is distinct from canonical_json(), which is designed for hashing and
converts datetimes to bare ISO strings. Contexts need round-trip fidelity,
not canonical form.

NaN/Infinity are rejected: a context that cannot be reloaded exactly would
resume the step at the wrong position.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from typing import Any

_ENVELOPE_TYPE_KEY = "__hopper_type__"
_ENVELOPE_VALUE_KEY = "__hopper_value__"


class ContextEncoder(json.JSONEncoder):
    """JSON encoder that wraps datetimes in type envelopes.

    Encodes datetime as {"__hopper_type__": "datetime", "__hopper_value__": "iso_string"}.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=UTC)
            return {
                _ENVELOPE_TYPE_KEY: "datetime",
                _ENVELOPE_VALUE_KEY: obj.isoformat(),
            }
        return super().default(obj)


def _reject_nan_infinity(obj: Any) -> Any:
    """Recursively check for NaN/Infinity in data structure.

    Raises:
        ValueError: If NaN or Infinity found
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}. Use None for missing values, not NaN/Infinity.")
    elif isinstance(obj, dict):
        for v in obj.values():
            _reject_nan_infinity(v)
    elif isinstance(obj, list | tuple):
        for v in obj:
            _reject_nan_infinity(v)
    return obj


def _escape_reserved_keys(obj: Any) -> Any:
    """Recursively escape user dicts that contain the reserved key."""
    if isinstance(obj, datetime):
        return obj
    if isinstance(obj, dict):
        escaped = {k: _escape_reserved_keys(v) for k, v in obj.items()}
        if _ENVELOPE_TYPE_KEY in escaped:
            return {
                _ENVELOPE_TYPE_KEY: "escaped_dict",
                _ENVELOPE_VALUE_KEY: escaped,
            }
        return escaped
    if isinstance(obj, list | tuple):
        return [_escape_reserved_keys(v) for v in obj]
    return obj


def context_dumps(obj: Any) -> str:
    """Serialize an execution context (or any JSON-like value) with type preservation.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains non-serializable types
    """
    _reject_nan_infinity(obj)
    escaped = _escape_reserved_keys(obj)
    return json.dumps(escaped, cls=ContextEncoder, allow_nan=False, sort_keys=True)


def _restore_types(obj: Any) -> Any:
    if isinstance(obj, dict):
        if _ENVELOPE_TYPE_KEY in obj and _ENVELOPE_VALUE_KEY in obj and len(obj) == 2:
            envelope_type = obj[_ENVELOPE_TYPE_KEY]
            envelope_value = obj[_ENVELOPE_VALUE_KEY]

            if envelope_type == "datetime" and isinstance(envelope_value, str):
                return datetime.fromisoformat(envelope_value)

            if envelope_type == "escaped_dict" and isinstance(envelope_value, dict):
                return {k: _restore_types(v) for k, v in envelope_value.items()}

        return {k: _restore_types(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_restore_types(v) for v in obj]
    return obj


def context_loads(s: str) -> Any:
    """Inverse of context_dumps().

    Raises:
        json.JSONDecodeError: If string is not valid JSON
    """
    return _restore_types(json.loads(s))
