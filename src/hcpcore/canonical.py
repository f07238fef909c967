"""Canonical JSON serialization for signable manifest payloads.

The signature covers the bytes produced here, so the output is a frozen
wire contract shared with every other implementation of the format.

Design decisions:
- Objects keep the field order the caller builds them in; the manifest
  builds its payload in one fixed order.
- Plain maps (contribution metrics, proofs) are emitted with sorted keys.
- No whitespace, raw UTF-8, with <, >, &, U+2028 and U+2029 escaped.
- Integral floats render without a fraction (10.0 -> 10); floats outside
  [1e-6, 1e21) use exponent form with no leading zero in the exponent
  (1e-07 -> 1e-7).
- NaN and Infinity are rejected.
"""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from typing import Any

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class OrderedObject(dict):
    """Mapping whose insertion order is part of the encoding."""


def _encode_string(value: str) -> str:
    encoded = json.dumps(value, ensure_ascii=False)
    for char, escape in _ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return encoded


def _encode_float(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Cannot canonicalize non-finite float: {value}")
    if value == 0:
        return "0"
    magnitude = abs(value)
    if magnitude < 1e-6 or magnitude >= 1e21:
        return re.sub(r"e-0(\d)$", r"e-\1", repr(value))
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _encode_float(value)
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, OrderedObject):
        items = value.items()
    elif isinstance(value, dict):
        items = sorted(value.items())
    elif isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    elif hasattr(value, "to_payload"):
        return _encode(value.to_payload())
    else:
        raise TypeError(f"Cannot canonicalize {type(value).__name__}")
    return "{" + ",".join(
        f"{_encode_string(str(key))}:{_encode(item)}" for key, item in items
    ) + "}"


def canonical_payload_json(data: Any) -> str:
    """Produce the canonical compact JSON string for a payload.

    Args:
        data: Nested OrderedObject/dict/list/scalar structure

    Returns:
        Compact JSON string

    Raises:
        ValueError: If data contains NaN or Infinity floats
        TypeError: If data contains a value with no JSON form
    """
    return _encode(data)


def canonical_payload_bytes(data: Any) -> bytes:
    """Canonical payload as UTF-8 bytes (surrogate-escaped names kept raw)."""
    return canonical_payload_json(data).encode("utf-8", "surrogateescape")


def pretty_json(data: Any) -> str:
    """Human-facing JSON for persisted manifests and reports.

    Keeps insertion order so the file reads in wire order.
    """
    return json.dumps(data, indent=2, ensure_ascii=False)
