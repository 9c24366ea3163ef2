"""Canonical JSON for signed payloads.

The statement is signed over its exact bytes, so encoding is fixed:
keys sorted at every level, compact separators, ASCII output. Tuples
encode as arrays, objects exposing ``to_dict()`` encode as that mapping,
and non-finite floats are rejected.
"""

from __future__ import annotations

import json
import math
from typing import Any


class CanonicalJSONEncoder(json.JSONEncoder):
    """Encoder with the canonical settings fixed."""

    def __init__(self, **kwargs: Any) -> None:
        kwargs.update(sort_keys=True, separators=(",", ":"), ensure_ascii=True, allow_nan=False)
        super().__init__(**kwargs)

    def default(self, o: Any) -> Any:
        to_dict = getattr(o, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return super().default(o)

    def encode(self, o: Any) -> str:
        return super().encode(_normalize(o))


def _normalize(obj: Any) -> Any:
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}")
        # -0.0 encodes as 0.0
        return obj + 0.0
    if isinstance(obj, dict):
        return {str(key): _normalize(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(item) for item in obj]
    return obj


_encoder = CanonicalJSONEncoder()


def canonical_json(data: Any) -> str:
    """Encode data as canonical JSON text.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains values JSON cannot represent
    """
    return _encoder.encode(data)


def canonical_bytes(data: Any) -> bytes:
    """Canonical JSON as UTF-8 bytes, ready to sign."""
    return canonical_json(data).encode("utf-8")
