from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Sequence

from common.cancellation import CancellationToken
from state.models import (
    RemoteUserData,
    StorageScope,
    StorageTarget,
    SyncData,
    WorkspaceStateFolder,
)


TranslationFunction = Callable[[Any], Any]


class LocalStateStore(Protocol):
    def list_keys(self, scope: StorageScope, target: StorageTarget) -> List[str]:
        ...

    def get(self, key: str, scope: StorageScope) -> Optional[str]:
        ...

    def set(self, key: str, value: Any, scope: StorageScope, target: StorageTarget) -> None:
        ...


class RemoteStore(Protocol):
    def read(self) -> Optional[RemoteUserData]:
        ...

    def write(self, sync_data: SyncData) -> RemoteUserData:
        ...


class IdentityResolver(Protocol):
    async def get_workspace_state_folders(self, token: CancellationToken) -> List[WorkspaceStateFolder]:
        ...

    async def matches(
        self, incoming: Sequence[WorkspaceStateFolder], token: CancellationToken
    ) -> Optional[TranslationFunction]:
        ...


@dataclass
class SyncContext:
    """Collaborators handed to the capture and apply pipelines."""

    local_store: LocalStateStore
    remote_store: RemoteStore
    identity: IdentityResolver
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("workspace_state"))
    machine_id: Optional[str] = None
