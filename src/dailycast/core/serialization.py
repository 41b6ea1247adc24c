"""Type-preserving JSON for persisted stage outputs.

Stage outputs are chained into the next stage on resume, so they must come
back with the same types they were written with. Plain json.dumps() loses
datetime/date and silently accepts NaN; this module fixes both.

Temporal values are wrapped in envelopes keyed by ``__dc_type__`` and
``__dc_value__``. A user mapping that happens to contain ``__dc_type__`` is
itself wrapped in an "escaped" envelope so it cannot be mistaken for one.
Tuples are written as lists.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any

_TYPE_KEY = "__dc_type__"
_VALUE_KEY = "__dc_value__"


def _encode(obj: Any) -> Any:
    """Convert a value tree into JSON-native types with envelopes."""
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}. Use None for missing values.")
        return obj
    # datetime is a date subclass, check it first
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return {_TYPE_KEY: "datetime", _VALUE_KEY: obj.isoformat()}
    if isinstance(obj, date):
        return {_TYPE_KEY: "date", _VALUE_KEY: obj.isoformat()}
    if isinstance(obj, Mapping):
        encoded = {str(k): _encode(v) for k, v in obj.items()}
        if _TYPE_KEY in encoded:
            return {_TYPE_KEY: "escaped", _VALUE_KEY: encoded}
        return encoded
    if isinstance(obj, (list, tuple)):
        return [_encode(v) for v in obj]
    return obj


def _decode(obj: Any) -> Any:
    if isinstance(obj, dict):
        if len(obj) == 2 and _TYPE_KEY in obj and _VALUE_KEY in obj:
            kind = obj[_TYPE_KEY]
            value = obj[_VALUE_KEY]
            if kind == "datetime":
                return datetime.fromisoformat(value)
            if kind == "date":
                return date.fromisoformat(value)
            if kind == "escaped":
                return {k: _decode(v) for k, v in value.items()}
        return {k: _decode(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decode(v) for v in obj]
    return obj


def state_dumps(obj: Any) -> str:
    """Serialize a stage payload to JSON.

    Raises:
        ValueError: If the payload contains NaN or Infinity
        TypeError: If the payload contains a non-serializable type
    """
    return json.dumps(_encode(obj), allow_nan=False, sort_keys=True)


def state_loads(s: str) -> Any:
    """Deserialize JSON written by state_dumps(), restoring dates and datetimes."""
    return _decode(json.loads(s))
