"""Deterministic cache keys.

A key is ``<family>:<canonical json of params>`` so equal query parameters
always map to the same key, whatever order the caller built them in.
"""

from __future__ import annotations

import datetime as dt
import enum
import json
import typing as t

FAMILY_SEPARATOR = ":"


def _default(value: t.Any) -> t.Any:
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    raise TypeError(f"unserializable cache key component: {type(value).__name__}")


def make_key(family: str, params: t.Optional[t.Mapping[str, t.Any]] = None) -> str:
    if FAMILY_SEPARATOR in family:
        raise ValueError(f"family must not contain {FAMILY_SEPARATOR!r}: {family!r}")
    cleaned = {k: v for k, v in (params or {}).items() if v is not None}
    body = json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=_default)
    return f"{family}{FAMILY_SEPARATOR}{body}"


def family_of(key: str) -> str:
    return key.split(FAMILY_SEPARATOR, 1)[0]


def date_key(value: t.Union[str, dt.date, dt.datetime]) -> str:
    """Return the YYYY-MM-DD part of a date, datetime or ISO string."""
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()[:10]
    return str(value).split("T", 1)[0]
