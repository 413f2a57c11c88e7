from __future__ import annotations

from enum import Enum
from typing import Any

import rfc8785
from pydantic import BaseModel


def _normalize(value: Any) -> Any:
    """Reduce pydantic models, enums, sets and tuples to JSON primitives for rfc8785."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, dict):
        return {str(key): _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(item) for item in value)
    return value


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic JSON per RFC 8785.

    Raises:
        rfc8785.CanonicalizationError: If a value has no JSON representation.
    """
    return rfc8785.dumps(_normalize(value)).decode("utf-8")
