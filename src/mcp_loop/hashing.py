# hashing.py
# Content hashing for the MCP loop.
#
# request_hash() is the executor's cache key: identical argument sets hash
# identically no matter how their keys were inserted.
#
# stdlib only — zero external dependencies.

import hashlib
import json
from typing import Any


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _serialize(value: Any) -> str:
    """Deterministic serialization. sort_keys is non-negotiable."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def request_hash(args: dict[str, Any]) -> str:
    """Cache key for a step's bound arguments."""
    return _sha256(_serialize(args))
