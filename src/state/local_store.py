from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.marshalling import stringify

from .models import StorageScope, StorageTarget


DEFAULT_STATE_FILE_ENV = "WORKSPACE_STATE_FILE"


def _default_state_file() -> Path:
    # Prefer explicit env var, else project-local folder
    base = os.environ.get(DEFAULT_STATE_FILE_ENV)
    if base:
        return Path(base)
    return Path(".workspace-state") / "state.json"


class JsonFileStateStore:
    """
    Scoped key/value store backed by a single JSON file.

    - File layout: { scope: { key: {"value": str, "target": "user"|"machine"} } }
    - Values are always stored as strings; structured values passed to `set`
      are marshalled first (URIs keep their `$mid` form).
    - Loaded lazily on first access and written through on every mutation.
    - A corrupt file raises ValueError instead of starting empty, so an
      unreadable store is never captured and published as "no state".
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else _default_state_file()
        self._data: Dict[str, Dict[str, Dict[str, str]]] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._path.exists():
            with self._path.open("r", encoding="utf-8") as f:
                try:
                    raw = json.load(f)
                except json.JSONDecodeError as ex:
                    raise ValueError(f"Corrupt local state file: {self._path}") from ex
            if not isinstance(raw, dict):
                raise ValueError(f"Unexpected local state layout in {self._path}")
            # normalize to scope -> key -> {value, target}
            self._data = {
                str(scope): {
                    str(k): {
                        "value": str(v.get("value", "")),
                        "target": str(v.get("target", StorageTarget.USER.value)),
                    }
                    for k, v in entries.items()
                    if isinstance(v, dict)
                }
                for scope, entries in raw.items()
                if isinstance(entries, dict)
            }
        self._loaded = True

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        tmp.replace(self._path)

    def list_keys(self, scope: StorageScope, target: StorageTarget) -> List[str]:
        self._ensure_loaded()
        entries = self._data.get(scope.value, {})
        return [k for k, v in entries.items() if v.get("target") == target.value]

    def get(self, key: str, scope: StorageScope) -> Optional[str]:
        self._ensure_loaded()
        entry = self._data.get(scope.value, {}).get(key)
        if entry is None:
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, scope: StorageScope, target: StorageTarget) -> None:
        self._ensure_loaded()
        if value is None:
            self.remove(key, scope)
            return
        raw = value if isinstance(value, str) else stringify(value)
        self._data.setdefault(scope.value, {})[key] = {"value": raw, "target": target.value}
        self._save()

    def remove(self, key: str, scope: StorageScope) -> None:
        self._ensure_loaded()
        entries = self._data.get(scope.value)
        if entries and entries.pop(key, None) is not None:
            self._save()
