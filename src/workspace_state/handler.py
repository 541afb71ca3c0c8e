from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

from common.identity import WorkspaceIdentityService
from common.sync_store import HttpRemoteStore
from state.local_store import JsonFileStateStore
from state.s3_store import DEFAULT_SLOT, S3RemoteStore

from .context import RemoteStore, SyncContext
from .synchroniser import WorkspaceStateSynchroniser


logger = logging.getLogger(__name__)

# Environment variable names expected
ENV_WORKSPACE_FOLDERS = "WORKSPACE_FOLDERS"
ENV_LOCAL_STATE_FILE = "WORKSPACE_STATE_FILE"
ENV_STATE_BUCKET = "STATE_BUCKET"
ENV_STATE_KEY = "STATE_KEY"  # optional; defaults to "workspaceState"
ENV_SYNC_STORE_URL = "SYNC_STORE_URL"
ENV_PARAM_PREFIX = "PARAM_PREFIX"  # optional; SSM prefix for secrets
ENV_FERNET_KEY = "FERNET_KEY"
ENV_SYNC_TOKEN = "SYNC_TOKEN"
ENV_MACHINE_ID = "MACHINE_ID"
ENV_LOG_LEVEL = "LOG_LEVEL"

DIRECTIONS = ("push", "pull")


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def _parse_folders(s: Optional[str]) -> List[Path]:
    if not s:
        return []
    # Dedup while preserving order
    seen: set[str] = set()
    out: List[Path] = []
    for part in s.split(os.pathsep):
        p = part.strip()
        if p and p not in seen:
            seen.add(p)
            out.append(Path(p))
    return out


def _secret(env_name: str, param_name: str, params: Dict[str, Optional[str]]) -> Optional[str]:
    return _getenv(env_name) or params.get(param_name)


def build_remote_store() -> RemoteStore:
    """S3 when STATE_BUCKET is set, else the HTTP sync store at SYNC_STORE_URL."""
    prefix = _getenv(ENV_PARAM_PREFIX)
    params = _load_ssm_params(prefix, ["fernet_key", "sync_token"]) if prefix else {}

    bucket = _getenv(ENV_STATE_BUCKET)
    if bucket:
        fernet_key = _require(_secret(ENV_FERNET_KEY, "fernet_key", params), ENV_FERNET_KEY)
        return S3RemoteStore(bucket=bucket, key=_getenv(ENV_STATE_KEY, DEFAULT_SLOT), fernet_key=fernet_key)

    url = _require(_getenv(ENV_SYNC_STORE_URL), f"{ENV_STATE_BUCKET} or {ENV_SYNC_STORE_URL}")
    return HttpRemoteStore(
        url,
        slot=_getenv(ENV_STATE_KEY, DEFAULT_SLOT),
        token=_secret(ENV_SYNC_TOKEN, "sync_token", params),
    )


def build_context(remote_store: Optional[RemoteStore] = None) -> SyncContext:
    folders = _parse_folders(_getenv(ENV_WORKSPACE_FOLDERS))
    if not folders:
        _require(None, ENV_WORKSPACE_FOLDERS)

    state_file = _getenv(ENV_LOCAL_STATE_FILE)
    local_path = Path(state_file) if state_file else folders[0] / ".workspace-state" / "state.json"

    return SyncContext(
        local_store=JsonFileStateStore(local_path),
        remote_store=remote_store or build_remote_store(),
        identity=WorkspaceIdentityService(folders),
        logger=logging.getLogger("workspace_state"),
        machine_id=_getenv(ENV_MACHINE_ID),
    )


async def _run(direction: str, ctx: SyncContext) -> Dict[str, Any]:
    synchroniser = WorkspaceStateSynchroniser(ctx)
    if direction == "push":
        remote = await synchroniser.sync()
        if remote is None:
            return {"ok": True, "direction": direction, "published": False, "note": "No workspace folders; skipped"}
        return {"ok": True, "direction": direction, "published": True, "ref": remote.ref}

    remote = await synchroniser.pull()
    found = remote is not None and remote.sync_data is not None
    return {"ok": True, "direction": direction, "found": found, "ref": remote.ref if remote else None}


def run_once(direction: str, *, ctx: Optional[SyncContext] = None) -> Dict[str, Any]:
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    logging.basicConfig(level=_getenv(ENV_LOG_LEVEL, "INFO"))
    context = ctx or build_context()
    logger.info("Running workspace state %s", direction)
    return asyncio.run(_run(direction, context))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return run_once(str((event or {}).get("direction", "push")))
