from __future__ import annotations

import json
from typing import Any

from .uri import Uri


class MarshallingError(ValueError):
    """Raised when a stored value cannot be parsed back into a structure."""


def _default(obj: Any) -> Any:
    if isinstance(obj, Uri):
        return obj.to_json()
    raise TypeError(f"Object of type {type(obj).__name__} is not serializable")


def _revive(obj: dict) -> Any:
    if Uri.is_marshalled(obj):
        return Uri.revive(obj)
    return obj


def stringify(value: Any) -> str:
    # Compact separators keep values byte-stable across capture/restore cycles
    return json.dumps(value, default=_default, separators=(",", ":"), ensure_ascii=False)


def parse(text: str) -> Any:
    """Parse a marshalled string, reviving `{"$mid": 1, ...}` objects into `Uri`."""
    try:
        return json.loads(text, object_hook=_revive)
    except (TypeError, json.JSONDecodeError) as ex:
        raise MarshallingError(f"Failed to parse marshalled value: {ex}") from ex


__all__ = ["MarshallingError", "parse", "stringify"]
