"""
State models and stores for workspace state synchronization.

- models: the portable snapshot document and the remote envelope.
- local_store: JSON-file backed scoped key/value store.
- s3_store: S3-backed remote slot, encrypted at rest with Fernet.
"""

from .models import (
    RemoteUserData,
    StorageScope,
    StorageTarget,
    SyncData,
    WorkspaceStateDocument,
    WorkspaceStateFolder,
)

__all__ = [
    "RemoteUserData",
    "StorageScope",
    "StorageTarget",
    "SyncData",
    "WorkspaceStateDocument",
    "WorkspaceStateFolder",
]
