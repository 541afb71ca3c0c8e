from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from .models import RemoteUserData, SyncData


# Environment variable names for convenience configuration
ENV_BUCKET = "STATE_BUCKET"
ENV_KEY = "STATE_KEY"
ENV_FERNET_KEY = "FERNET_KEY"

# Fixed remote slot for this resource kind
DEFAULT_SLOT = "workspaceState"


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _dump_sync_data(sync_data: SyncData) -> bytes:
    return sync_data.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def _load_sync_data(data: bytes) -> SyncData:
    return SyncData.model_validate_json(data)


@dataclass
class S3ObjectRef:
    bucket: str
    key: str


class S3RemoteStore:
    """
    S3-backed remote slot for the workspace state envelope, encrypted at rest
    using Fernet.

    Usage
    - `read()` returns a `RemoteUserData` whose `ref` is the object ETag, or
      None when the slot has never been written.
    - `write(sync_data)` fully overwrites the slot and returns the new
      `RemoteUserData`; the last writer wins.

    Environment variables (optional)
    - `STATE_BUCKET`: S3 bucket holding the slot
    - `STATE_KEY`:    S3 key of the slot (defaults to "workspaceState")
    - `FERNET_KEY`:   urlsafe base64-encoded key for Fernet
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        key: str = DEFAULT_SLOT,
        fernet_key: str | bytes,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)
        self._fernet = _to_fernet(fernet_key)

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3RemoteStore":
        bucket = os.environ.get(ENV_BUCKET)
        key = os.environ.get(ENV_KEY) or DEFAULT_SLOT
        fkey = os.environ.get(ENV_FERNET_KEY)
        if not bucket or not fkey:
            missing = [name for name, val in [(ENV_BUCKET, bucket), (ENV_FERNET_KEY, fkey)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for S3 remote store: {', '.join(missing)}"
            )
        return cls(bucket=bucket, key=key, fernet_key=fkey)

    # -------- Core operations --------
    def read(self) -> Optional[RemoteUserData]:
        """Read and decrypt the envelope from S3.

        Returns None if the object does not exist.
        Raises:
        - ValueError if decryption fails or the envelope is malformed.
        - botocore.exceptions.ClientError for other S3 issues.
        """
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise

        body = resp["Body"].read()
        etag = resp.get("ETag")  # usually quoted string
        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt workspace state: invalid Fernet token") from ex

        try:
            sync_data = _load_sync_data(decrypted)
        except ValidationError as ex:
            raise ValueError("Failed to parse decrypted workspace state envelope") from ex

        return RemoteUserData(ref=etag, sync_data=sync_data)

    def write(self, sync_data: SyncData) -> RemoteUserData:
        """Encrypt and write the envelope to S3; returns the stored `RemoteUserData`."""
        ciphertext = self._fernet.encrypt(_dump_sync_data(sync_data))
        resp = self._s3.put_object(
            Bucket=self._obj.bucket,
            Key=self._obj.key,
            Body=ciphertext,
            ContentType="application/octet-stream",
        )
        return RemoteUserData(ref=str(resp.get("ETag")), sync_data=sync_data)
