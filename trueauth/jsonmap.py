"""Conversion of JSON object columns to and from database values."""

from __future__ import annotations

import json
from typing import Any


def json_map_value(mapping: dict[str, Any] | None) -> str:
    """Serialise a mapping as compact JSON with sorted keys."""
    return json.dumps(mapping, separators=(",", ":"), sort_keys=True)


def json_map_scan(src: str | bytes | None) -> dict[str, Any]:
    """Parse a database value into a mapping; empty or NULL gives ``{}``."""
    if src is None:
        source: str | bytes = ""
    elif isinstance(src, (str, bytes, bytearray)):
        source = src
    else:
        raise TypeError("Invalid data type for JSONMap")
    if len(source) == 0:
        return {}
    value = json.loads(source)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("JSONMap value is not an object")
    return value