"""
Workspace state synchronization.

- snapshot: capture local workspace state and publish it to the remote slot.
- restore: apply a remote snapshot when the workspace folders match.
- synchroniser: the scheduler-facing synchroniser for this resource kind.
- handler: environment-driven entrypoint (push/pull).
"""

from .context import SyncContext
from .restore import IncompatibleRemoteContentError, apply
from .snapshot import capture, publish
from .synchroniser import Synchroniser, WorkspaceStateSynchroniser

__all__ = [
    "IncompatibleRemoteContentError",
    "SyncContext",
    "Synchroniser",
    "WorkspaceStateSynchroniser",
    "apply",
    "capture",
    "publish",
]
