from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StorageScope(str, Enum):
    """Lifetime of a local state entry."""

    APPLICATION = "application"
    PROFILE = "profile"
    WORKSPACE = "workspace"


class StorageTarget(str, Enum):
    """Whether a state entry belongs to the user or to the machine."""

    USER = "user"
    MACHINE = "machine"


class WorkspaceStateFolder(BaseModel):
    """
    Identity descriptor of one workspace root.

    Fields
    - resource_uri: URI string of the folder on the machine that captured it
      (e.g., "file:///repo").
    - workspace_folder_identity: opaque identity string produced by an identity
      provider (git remote, folder name, ...). Only the identity resolver
      interprets it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    resource_uri: str = Field(..., alias="resourceUri")
    workspace_folder_identity: str = Field(..., alias="workspaceFolderIdentity")


class WorkspaceStateDocument(BaseModel):
    """
    Portable snapshot of workspace-scoped user state.

    Wire shape (JSON):
        {"folders": [{"resourceUri": ..., "workspaceFolderIdentity": ...}],
         "storage": {"<key>": "<serialized value>"}}
    """

    folders: List[WorkspaceStateFolder] = Field(default_factory=list)
    storage: Dict[str, str] = Field(default_factory=dict)


class SyncData(BaseModel):
    """Envelope stored in the remote slot: format version plus the content string."""

    model_config = ConfigDict(populate_by_name=True)

    version: int
    machine_id: Optional[str] = Field(default=None, alias="machineId")
    content: str


class RemoteUserData(BaseModel):
    """
    What the remote store returns for a slot.

    - ref: store-assigned version (S3 ETag or HTTP ETag header); None if unknown.
    - sync_data: parsed envelope, or None when the slot holds nothing.
    """

    model_config = ConfigDict(populate_by_name=True)

    ref: Optional[str] = None
    sync_data: Optional[SyncData] = Field(default=None, alias="syncData")
