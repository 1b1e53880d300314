"""Shared plumbing for calls into the EHR backend (user directory, record store).

Each call is a single bounded request; nothing here retries. Timeouts and
transport failures surface as ``UpstreamError`` so the calling transaction
rolls back and the client may retry.
"""
import logging
from typing import Any
import httpx
from ehr_access.core.config import settings
from ehr_access.core.errors import UpstreamError

log = logging.getLogger("upstream.http")

class BackendClient:
    def __init__(self, base_url: str, *, timeout: float | None = None, token: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout or settings.UPSTREAM_TIMEOUT_SECONDS)
        self.token = token if token is not None else settings.BACKEND_SERVICE_TOKEN
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict | None:
        """GET ``path``; returns the decoded body, or None on 404."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            log.warning("Upstream timeout GET %s: %s", path, e)
            raise UpstreamError("Upstream request timed out", code="upstream_timeout", detail={"path": path})
        except httpx.RequestError as e:
            log.warning("Upstream request failed GET %s: %s", path, e)
            raise UpstreamError("Upstream request failed", detail={"path": path})

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            log.warning("Upstream GET %s returned %s", path, resp.status_code)
            raise UpstreamError(f"Upstream returned {resp.status_code}", detail={"path": path, "status": resp.status_code})
        return resp.json()

def unwrap(body: dict | None, key: str):
    # backend envelope: {"success": true, "data": {<key>: ...}}
    if not body:
        return None
    data = body.get("data", body)
    if isinstance(data, dict):
        return data.get(key)
    return None
