"""Deterministic content digests for catalog records.

A record's hash covers only the fields returned by its
``hashable_fields()``.  Keys are sorted and values normalized before
marshalling, so two records with the same semantic content hash equally
regardless of field order, container type (tuple vs list) or numeric
representation (``1.0`` vs ``1``).
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    # Anything else (datetime, Decimal) hashes by its string form.
    return str(value)


def hash_fields(fields: Mapping[str, Any]) -> str:
    """Return the lowercase hex SHA-256 of a canonical field mapping."""
    canonical = json.dumps(
        _normalize(fields),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def content_hash(record: Any) -> str:
    """Hash a record's declared content fields."""
    return hash_fields(record.hashable_fields())


def with_content_hash(record: Any) -> Any:
    """Return ``record`` tagged with its content hash (a new frozen copy)."""
    return record.with_hash(content_hash(record))


def is_valid_hash(value: object) -> bool:
    return isinstance(value, str) and bool(_HASH_RE.match(value))
