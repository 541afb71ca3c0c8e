from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import ValidationError

from common import cancellation
from common.cancellation import CancellationToken
from common.marshalling import MarshallingError, parse, stringify
from state.models import RemoteUserData, StorageScope, StorageTarget, WorkspaceStateDocument

from .context import LocalStateStore, SyncContext, TranslationFunction
from .snapshot import SYNC_DATA_VERSION


class IncompatibleRemoteContentError(RuntimeError):
    """Raised when the remote envelope was written by a newer format version."""


def parse_document(content: str) -> Optional[WorkspaceStateDocument]:
    raw = parse(content)
    if raw is None:
        return None
    try:
        return WorkspaceStateDocument.model_validate(raw)
    except ValidationError as ex:
        raise MarshallingError(f"Malformed workspace state document: {ex}") from ex


def _restore_value(store: LocalStateStore, key: str, raw: str) -> None:
    store.set(key, raw, StorageScope.WORKSPACE, StorageTarget.USER)


async def apply(
    ctx: SyncContext,
    remote_user_data: Optional[RemoteUserData],
    token: CancellationToken = cancellation.NONE,
) -> None:
    """
    Restore a remote workspace state document into the local store.

    The recorded folders must match the current workspace; one translation
    function is derived from that match and applied to every stored value.
    Keys are written one by one and not rolled back if a later key fails.
    """
    sync_data = remote_user_data.sync_data if remote_user_data is not None else None
    document = parse_document(sync_data.content) if sync_data and sync_data.content else None
    if document is None:
        ctx.logger.info("Skipping initializing workspace state because remote workspace state does not exist.")
        return

    if sync_data.version > SYNC_DATA_VERSION:
        raise IncompatibleRemoteContentError(
            f"Remote workspace state version {sync_data.version} is newer than supported {SYNC_DATA_VERSION}"
        )

    if not document.storage:
        return

    replace_uris: Optional[TranslationFunction] = await ctx.identity.matches(document.folders, token)
    if replace_uris is None:
        ctx.logger.info("Skipping initializing workspace state because workspace folders do not match.")
        return

    for key, raw in document.storage.items():
        value = parse(raw)
        translated = replace_uris(value)
        # Written marshalled so a plain JSON string keeps its quotes; untouched
        # values keep their original bytes
        out = raw if translated == value else stringify(translated)
        await asyncio.to_thread(_restore_value, ctx.local_store, key, out)
    ctx.logger.info("Restored %d workspace state key(s)", len(document.storage))
