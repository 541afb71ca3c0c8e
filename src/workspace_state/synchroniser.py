from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Protocol

from common.cancellation import CancellationToken, CancellationTokenSource
from common.uri import Uri
from state.models import RemoteUserData

from .context import SyncContext
from .restore import apply
from .snapshot import capture, publish


class Synchroniser(Protocol):
    """Operations a sync scheduler drives for one resource kind."""

    resource: str
    supports_merge_preview: bool

    async def sync(self) -> Optional[RemoteUserData]:
        ...

    async def apply_result(self, remote_user_data: Optional[RemoteUserData]) -> None:
        ...

    async def generate_sync_preview(self, remote_user_data: Optional[RemoteUserData], *args: Any, **kwargs: Any) -> List[Any]:
        ...

    async def get_merge_result(self, resource_preview: Any, token: CancellationToken) -> Any:
        ...

    async def get_accept_result(
        self, resource_preview: Any, resource: Uri, content: Optional[str], token: CancellationToken
    ) -> Any:
        ...

    async def has_remote_changed(self, last_sync_user_data: Optional[RemoteUserData]) -> bool:
        ...

    async def has_local_data(self) -> bool:
        ...

    async def resolve_content(self, uri: Uri) -> Optional[str]:
        ...


class WorkspaceStateSynchroniser:
    """
    Synchroniser for workspace-scoped user state.

    - `sync()` captures and publishes a full snapshot (skipped without folders).
    - `apply_result()` restores a remote snapshot when the folders match.
    - No previews or merges: the preview list is always empty, the resource is
      always considered changed and never exposes local content.
    Capture and apply never overlap; both run under one lock.
    """

    resource = "workspaceState"
    supports_merge_preview = False

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx
        self._lock = asyncio.Lock()
        self._cancellation: Optional[CancellationTokenSource] = None

    @property
    def context(self) -> SyncContext:
        return self._ctx

    def cancel(self) -> None:
        """Request cancellation of the in-flight identity resolution, if any."""
        if self._cancellation is not None:
            self._cancellation.cancel()

    async def sync(self) -> Optional[RemoteUserData]:
        async with self._lock:
            self._cancellation = CancellationTokenSource()
            try:
                document = await capture(self._ctx, self._cancellation.token)
                if document is None:
                    return None
                return await publish(self._ctx, document)
            finally:
                self._cancellation = None

    async def apply_result(self, remote_user_data: Optional[RemoteUserData]) -> None:
        async with self._lock:
            self._cancellation = CancellationTokenSource()
            try:
                await apply(self._ctx, remote_user_data, self._cancellation.token)
            finally:
                self._cancellation = None

    async def pull(self) -> Optional[RemoteUserData]:
        """Read the remote slot and apply it; returns what was read."""
        remote = await asyncio.to_thread(self._ctx.remote_store.read)
        await self.apply_result(remote)
        return remote

    async def generate_sync_preview(
        self, remote_user_data: Optional[RemoteUserData], *args: Any, **kwargs: Any
    ) -> List[Any]:
        return []

    async def get_merge_result(self, resource_preview: Any, token: CancellationToken) -> Any:
        raise NotImplementedError("workspace state has no merge result")

    async def get_accept_result(
        self, resource_preview: Any, resource: Uri, content: Optional[str], token: CancellationToken
    ) -> Any:
        raise NotImplementedError("workspace state has no accept result")

    async def has_remote_changed(self, last_sync_user_data: Optional[RemoteUserData]) -> bool:
        return True

    async def has_local_data(self) -> bool:
        return False

    async def resolve_content(self, uri: Uri) -> Optional[str]:
        return None
