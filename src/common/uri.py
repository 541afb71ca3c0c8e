from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote, urlsplit


# Marker used by the marshalled JSON form of a URI
URI_MARSHAL_ID = 1


@dataclass(frozen=True)
class Uri:
    """
    Minimal URI value type used inside stored workspace state.

    Paths are always POSIX-style and absolute when an authority or the `file`
    scheme is present. The marshalled form is a plain JSON object tagged with
    `"$mid": 1` so it can be revived after a JSON round-trip.
    """

    scheme: str
    authority: str = ""
    path: str = ""
    query: str = ""
    fragment: str = ""

    # -------- Construction helpers --------
    @classmethod
    def parse(cls, value: str) -> "Uri":
        parts = urlsplit(value)
        if not parts.scheme:
            raise ValueError(f"Not a URI (missing scheme): {value!r}")
        return cls(
            scheme=parts.scheme,
            authority=parts.netloc,
            path=unquote(parts.path),
            query=parts.query,
            fragment=parts.fragment,
        )

    @classmethod
    def file(cls, path: str) -> "Uri":
        p = path.replace("\\", "/")
        if not p.startswith("/"):
            p = "/" + p
        return cls(scheme="file", path=p)

    @classmethod
    def revive(cls, data: Dict[str, Any]) -> "Uri":
        return cls(
            scheme=str(data.get("scheme", "")),
            authority=str(data.get("authority", "")),
            path=str(data.get("path", "")),
            query=str(data.get("query", "")),
            fragment=str(data.get("fragment", "")),
        )

    @staticmethod
    def is_marshalled(data: Any) -> bool:
        return isinstance(data, dict) and data.get("$mid") == URI_MARSHAL_ID and "scheme" in data

    # -------- Conversions --------
    @property
    def fs_path(self) -> str:
        return self.path

    def with_path(self, path: str) -> "Uri":
        return Uri(self.scheme, self.authority, path, self.query, self.fragment)

    def to_string(self) -> str:
        out = f"{self.scheme}:"
        if self.authority or self.scheme == "file":
            out += "//" + self.authority
        out += quote(self.path, safe="/:@!$&'()*+,;=-._~")
        if self.query:
            out += "?" + self.query
        if self.fragment:
            out += "#" + self.fragment
        return out

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"$mid": URI_MARSHAL_ID, "scheme": self.scheme}
        for name in ("authority", "path", "query", "fragment"):
            val = getattr(self, name)
            if val:
                out[name] = val
        return out

    def __str__(self) -> str:
        return self.to_string()


def _same_root(a: Uri, b: Uri) -> bool:
    return a.scheme == b.scheme and a.authority.lower() == b.authority.lower()


def is_equal_or_parent(base: Uri, candidate: Uri) -> bool:
    """True when `candidate` is `base` itself or lives underneath it."""
    if not _same_root(base, candidate):
        return False
    root = base.path.rstrip("/")
    if candidate.path.rstrip("/") == root:
        return True
    return candidate.path.startswith(root + "/")


def relative_path(base: Uri, candidate: Uri) -> Optional[str]:
    """Path of `candidate` relative to `base` ("" for equal), or None if unrelated."""
    if not is_equal_or_parent(base, candidate):
        return None
    root = base.path.rstrip("/")
    return candidate.path[len(root):].lstrip("/")


def join_path(base: Uri, relative: str) -> Uri:
    if not relative:
        return base
    return base.with_path(posixpath.join(base.path or "/", relative))


__all__ = [
    "Uri",
    "URI_MARSHAL_ID",
    "is_equal_or_parent",
    "relative_path",
    "join_path",
]
