from __future__ import annotations

import asyncio
from typing import Dict, Optional

from common import cancellation
from common.cancellation import CancellationToken
from common.marshalling import stringify
from state.models import (
    RemoteUserData,
    StorageScope,
    StorageTarget,
    SyncData,
    WorkspaceStateDocument,
)

from .context import LocalStateStore, SyncContext


# Envelope format version written by this synchroniser
SYNC_DATA_VERSION = 1


def _read_workspace_storage(store: LocalStateStore) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key in store.list_keys(StorageScope.WORKSPACE, StorageTarget.USER):
        data = store.get(key, StorageScope.WORKSPACE)
        if data:
            out[key] = data
    return out


async def capture(
    ctx: SyncContext, token: CancellationToken = cancellation.NONE
) -> Optional[WorkspaceStateDocument]:
    """
    Snapshot workspace-scoped user state together with the folder identities.

    Returns None when the current workspace has no identifiable folders; values
    are copied verbatim, without any filtering or interpretation.
    """
    folders = await ctx.identity.get_workspace_state_folders(token)
    if not folders:
        ctx.logger.info("Skipping workspace state capture: no workspace folders")
        return None

    storage = await asyncio.to_thread(_read_workspace_storage, ctx.local_store)
    return WorkspaceStateDocument(folders=folders, storage=storage)


def serialize_document(document: WorkspaceStateDocument) -> str:
    return stringify(document.model_dump(by_alias=True))


async def publish(ctx: SyncContext, document: WorkspaceStateDocument) -> RemoteUserData:
    """Write the document to the remote slot as a full overwrite; errors propagate."""
    sync_data = SyncData(
        version=SYNC_DATA_VERSION,
        machine_id=ctx.machine_id,
        content=serialize_document(document),
    )
    remote = await asyncio.to_thread(ctx.remote_store.write, sync_data)
    ctx.logger.info(
        "Published workspace state: %d folder(s), %d key(s), ref=%s",
        len(document.folders),
        len(document.storage),
        remote.ref,
    )
    return remote
