"""Wire encoding for derived tables.

Percentages are plain numbers, ratios are unrounded floats, infinities
travel as the strings ``"Infinity"`` / ``"-Infinity"`` (strict JSON has no
literal for them) and timestamps as ISO-8601.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

POS_INF = "Infinity"
NEG_INF = "-Infinity"


def encode_ratio(value: float | None) -> float | str | None:
    if value is None:
        return None
    if math.isinf(value):
        return POS_INF if value > 0 else NEG_INF
    return float(value)


def encode_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def to_jsonable(value: Any) -> Any:
    """Recursively convert derived structures into JSON-safe values."""
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return encode_ratio(value)
    if isinstance(value, datetime):
        return encode_time(value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Deterministic JSON text: sorted keys, no whitespace variance."""
    return json.dumps(
        to_jsonable(value), sort_keys=True, separators=(",", ":"), allow_nan=False
    )


def fingerprint(value: Any) -> str:
    return hashlib.sha256(canonical_json(value).encode()).hexdigest()
