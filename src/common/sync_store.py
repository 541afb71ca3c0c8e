from __future__ import annotations

from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from state.models import RemoteUserData, SyncData
from state.s3_store import DEFAULT_SLOT


class RemoteStoreError(RuntimeError):
    """Base error for the HTTP sync store client."""


class RemoteStoreApiError(RemoteStoreError):
    """Service returned an error status or an unexpected payload."""


class HttpRemoteStore:
    """
    Minimal client for a user-data sync service holding one resource slot.

    Notes
    - `GET  {base}/v1/resource/{slot}/latest` reads the envelope; 204/404 mean
      the slot is empty. The `ETag` response header becomes `RemoteUserData.ref`.
    - `POST {base}/v1/resource/{slot}` fully overwrites the slot.
    - No retries: the caller's sync scheduler owns retry/backoff policy.
    """

    def __init__(
        self,
        base_url: str,
        *,
        slot: str = DEFAULT_SLOT,
        token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._slot = slot
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpRemoteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def read(self) -> Optional[RemoteUserData]:
        resp = self._send("GET", f"/v1/resource/{self._slot}/latest")
        if resp.status_code in (204, 404):
            return None
        if resp.status_code != 200:
            raise RemoteStoreApiError(f"HTTP {resp.status_code} from sync store: {resp.text[:200]}")
        try:
            sync_data = SyncData.model_validate_json(resp.content)
        except ValidationError as ve:
            raise RemoteStoreApiError(f"Failed to parse sync store payload: {ve}") from ve
        return RemoteUserData(ref=resp.headers.get("ETag"), sync_data=sync_data)

    def write(self, sync_data: SyncData) -> RemoteUserData:
        headers = {"Content-Type": "application/json"}
        body = sync_data.model_dump_json(by_alias=True, exclude_none=True)
        resp = self._send("POST", f"/v1/resource/{self._slot}", content=body, headers=headers)
        if resp.status_code not in (200, 201, 204):
            raise RemoteStoreApiError(f"HTTP {resp.status_code} from sync store: {resp.text[:200]}")
        return RemoteUserData(ref=resp.headers.get("ETag"), sync_data=sync_data)

    # --------------- Internal ---------------
    def _send(
        self,
        method: str,
        path: str,
        *,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        hdrs = dict(headers or {})
        if self._token:
            hdrs["Authorization"] = f"Bearer {self._token}"
        try:
            return self._client.request(method, f"{self._base_url}{path}", content=content, headers=hdrs)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise RemoteStoreError(f"{method} {path} failed: {exc}") from exc


__all__ = [
    "HttpRemoteStore",
    "RemoteStoreError",
    "RemoteStoreApiError",
]
