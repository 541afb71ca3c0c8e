from __future__ import annotations

import asyncio
import configparser
import json
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from state.models import WorkspaceStateFolder

from .cancellation import CancellationToken
from .uri import Uri, join_path, relative_path


logger = logging.getLogger(__name__)

# Nesting limit for the URI rewrite walk; deeper values are returned as-is
MAX_REWRITE_DEPTH = 200


class IdentityMatch(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    NONE = "none"


class IdentityProvider(Protocol):
    """Computes and compares identities for workspace folders of one kind."""

    kind: str

    def identify(self, folder: Path) -> Optional[str]:
        ...

    def match(self, current: str, incoming: str) -> IdentityMatch:
        ...


def _load_identity(raw: str, kind: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("kind") != kind:
        return None
    return data


def _dump_identity(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


class FolderNameIdentityProvider:
    """Identifies a folder by its base name; the weakest useful identity."""

    kind = "name"

    def identify(self, folder: Path) -> Optional[str]:
        if not folder.is_dir() or not folder.name:
            return None
        return _dump_identity({"kind": self.kind, "name": folder.name})

    def match(self, current: str, incoming: str) -> IdentityMatch:
        cur = _load_identity(current, self.kind)
        inc = _load_identity(incoming, self.kind)
        if cur is None or inc is None:
            return IdentityMatch.NONE
        return IdentityMatch.COMPLETE if cur.get("name") == inc.get("name") else IdentityMatch.NONE


_SCP_LIKE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>(?!//).+)$")


def normalize_remote_url(url: str) -> str:
    """
    Reduce a git remote URL to "host/owner/repo" so https and ssh clones of
    the same repository compare equal.

    - Credentials, ports and a trailing ".git" are dropped; the host is lowercased.
    - scp-like syntax ("git@github.com:owner/repo.git") is accepted.
    """
    s = url.strip()
    m = _SCP_LIKE.match(s) if "://" not in s else None
    if m:
        host, path = m.group("host"), m.group("path")
    else:
        rest = s.split("://", 1)[-1]
        authority, _, path = rest.partition("/")
        host = authority.rsplit("@", 1)[-1].split(":", 1)[0]
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return f"{host.lower()}/{path}" if host else path


class GitRemoteIdentityProvider:
    """
    Identifies a folder by the git remote it was cloned from plus its HEAD ref.

    - COMPLETE when remote and ref are equal.
    - PARTIAL when only the remote is equal (same repository, other branch).
    Reads `.git/config` and `.git/HEAD` directly; no git executable required.
    """

    kind = "git"

    def __init__(self, remote_name: str = "origin") -> None:
        self._remote_name = remote_name

    @staticmethod
    def _git_dir(folder: Path) -> Optional[Path]:
        dot_git = folder / ".git"
        if dot_git.is_dir():
            return dot_git
        if dot_git.is_file():
            # worktrees and submodules: "gitdir: <path>"
            line = dot_git.read_text(encoding="utf-8").strip()
            if line.startswith("gitdir:"):
                target = Path(line[len("gitdir:"):].strip())
                return target if target.is_absolute() else (folder / target)
        return None

    def _remote_url(self, git_dir: Path) -> Optional[str]:
        config_path = git_dir / "config"
        if not config_path.is_file():
            # linked worktrees keep config in the common dir
            common = git_dir / "commondir"
            if not common.is_file():
                return None
            config_path = (git_dir / common.read_text(encoding="utf-8").strip()) / "config"
        parser = configparser.RawConfigParser(strict=False, allow_no_value=True)
        try:
            parser.read(config_path, encoding="utf-8")
        except configparser.Error as ex:
            logger.warning("Failed to parse git config %s: %s", config_path, ex)
            return None
        preferred = f'remote "{self._remote_name}"'
        sections = [preferred] if parser.has_section(preferred) else []
        sections += [s for s in parser.sections() if s.startswith('remote "') and s != preferred]
        for section in sections:
            url = parser.get(section, "url", fallback=None)
            if url:
                return url
        return None

    @staticmethod
    def _head_ref(git_dir: Path) -> Optional[str]:
        head = git_dir / "HEAD"
        if not head.is_file():
            return None
        text = head.read_text(encoding="utf-8").strip()
        if text.startswith("ref:"):
            return text[len("ref:"):].strip().removeprefix("refs/heads/")
        return text or None

    def identify(self, folder: Path) -> Optional[str]:
        git_dir = self._git_dir(folder)
        if git_dir is None:
            return None
        url = self._remote_url(git_dir)
        if not url:
            return None
        return _dump_identity(
            {"kind": self.kind, "remote": normalize_remote_url(url), "ref": self._head_ref(git_dir)}
        )

    def match(self, current: str, incoming: str) -> IdentityMatch:
        cur = _load_identity(current, self.kind)
        inc = _load_identity(incoming, self.kind)
        if cur is None or inc is None or cur.get("remote") != inc.get("remote"):
            return IdentityMatch.NONE
        if cur.get("ref") == inc.get("ref"):
            return IdentityMatch.COMPLETE
        return IdentityMatch.PARTIAL


class UriTranslator:
    """
    Rewrites URIs embedded in an arbitrary value from the recorded workspace
    folders into the matching current folders.

    - `Uri` objects under a recorded folder are rebased onto its current folder.
    - Strings holding a URI (`scheme://...`) or an absolute path under a recorded
      folder are rebased and returned in the same textual form.
    - dicts/lists/tuples are walked recursively up to MAX_REWRITE_DEPTH; all other
      values pass through unchanged. The input is never mutated.
    """

    def __init__(self, mapping: Sequence[Tuple[Uri, Uri]]) -> None:
        # Longest recorded folder first so nested roots win over their parents
        self._mapping = sorted(mapping, key=lambda pair: len(pair[0].path), reverse=True)

    def __call__(self, value: Any) -> Any:
        return self._replace(value, 0)

    def convert_uri(self, uri: Uri) -> Uri:
        for incoming, current in self._mapping:
            rel = relative_path(incoming, uri)
            if rel is not None:
                # query and fragment belong to the rewritten URI, not the folder
                joined = join_path(current, rel)
                return Uri(joined.scheme, joined.authority, joined.path, uri.query, uri.fragment)
        return uri

    def _convert_str(self, s: str) -> str:
        if s.startswith("/"):
            uri = Uri.file(s)
            converted = self.convert_uri(uri)
            return s if converted == uri else converted.fs_path
        if "://" in s:
            try:
                uri = Uri.parse(s)
            except ValueError:
                return s
            converted = self.convert_uri(uri)
            return s if converted == uri else converted.to_string()
        return s

    def _replace(self, obj: Any, depth: int) -> Any:
        if obj is None or depth > MAX_REWRITE_DEPTH:
            return obj
        if isinstance(obj, Uri):
            return self.convert_uri(obj)
        if isinstance(obj, str):
            return self._convert_str(obj)
        if isinstance(obj, dict):
            return {k: self._replace(v, depth + 1) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return type(obj)(self._replace(v, depth + 1) for v in obj)
        return obj


class WorkspaceIdentityService:
    """
    Identity resolver for the folders of the current workspace.

    Each folder takes the identity of the first provider that can identify it
    (git remote by default, then folder name). Folder stats and file reads run
    in worker threads; the cancellation token is checked between folders.
    """

    def __init__(
        self,
        folders: Sequence[os.PathLike[str] | str],
        providers: Optional[Sequence[IdentityProvider]] = None,
    ) -> None:
        self._folders = [Path(f).expanduser().absolute() for f in folders]
        self._providers: List[IdentityProvider] = list(
            providers if providers is not None else (GitRemoteIdentityProvider(), FolderNameIdentityProvider())
        )

    @property
    def folders(self) -> List[Path]:
        return list(self._folders)

    async def _identify_folders(
        self, token: CancellationToken
    ) -> List[Tuple[Path, str, IdentityProvider]]:
        out: List[Tuple[Path, str, IdentityProvider]] = []
        for folder in self._folders:
            token.raise_if_cancelled()
            for provider in self._providers:
                identity = await asyncio.to_thread(provider.identify, folder)
                if identity:
                    out.append((folder, identity, provider))
                    break
            else:
                logger.debug("No identity for workspace folder %s", folder)
        return out

    async def get_workspace_state_folders(self, token: CancellationToken) -> List[WorkspaceStateFolder]:
        identified = await self._identify_folders(token)
        return [
            WorkspaceStateFolder(
                resource_uri=Uri.file(str(folder)).to_string(),
                workspace_folder_identity=identity,
            )
            for folder, identity, _ in identified
        ]

    async def matches(
        self, incoming: Sequence[WorkspaceStateFolder], token: CancellationToken
    ) -> Optional[UriTranslator]:
        """
        Return a translator when every identified current folder has a COMPLETE
        match among the recorded folders, else None.

        Each recorded folder is rebased onto at most one current folder. When
        several current folders share an identity they take the matching
        recorded folders in order; a current folder left with only claimed
        matches still counts as matched but is not a rebase target.
        """
        current = await self._identify_folders(token)
        if not current:
            logger.info("No identifiable folders in the current workspace")
            return None

        mapping: List[Tuple[Uri, Uri]] = []
        claimed: set[int] = set()
        for folder, identity, provider in current:
            token.raise_if_cancelled()
            candidates = [
                idx
                for idx, inc in enumerate(incoming)
                if provider.match(identity, inc.workspace_folder_identity) is IdentityMatch.COMPLETE
            ]
            if not candidates:
                logger.info("Workspace folder %s has no matching recorded folder", folder)
                return None
            free = [idx for idx in candidates if idx not in claimed]
            if not free:
                logger.debug("Recorded folder for %s already mapped to another folder", folder)
                continue
            claimed.add(free[0])
            mapping.append((Uri.parse(incoming[free[0]].resource_uri), Uri.file(str(folder))))
        return UriTranslator(mapping)


__all__ = [
    "FolderNameIdentityProvider",
    "GitRemoteIdentityProvider",
    "IdentityMatch",
    "IdentityProvider",
    "MAX_REWRITE_DEPTH",
    "UriTranslator",
    "WorkspaceIdentityService",
    "normalize_remote_url",
]
