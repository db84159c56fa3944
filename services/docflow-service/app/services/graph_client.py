# app/services/graph_client.py
from __future__ import annotations

from typing import Optional

import httpx

from app.config import settings
from app.errors import UpstreamError
from app.logger import get_logger

log = get_logger("services.graph")


class GraphClient:
    """Downloads SharePoint drive items through Microsoft Graph with the caller's token."""

    def __init__(
        self,
        *,
        base_url: str = settings.GRAPH_BASE_URL,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def download_item(self, *, site_id: str, item_id: str, access_token: str) -> bytes:
        url = f"{self.base_url}/sites/{site_id}/drive/items/{item_id}/content"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport, follow_redirects=True
            ) as client:
                resp = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("graph download failed site=%s item=%s status=%s", site_id, item_id, e.response.status_code)
            raise UpstreamError(
                f"Graph download failed ({e.response.status_code})", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            log.error("graph download failed site=%s item=%s err=%s", site_id, item_id, e)
            raise UpstreamError(f"Graph download failed: {e}") from e

        log.info("graph download site=%s item=%s bytes=%d", site_id, item_id, len(resp.content))
        return resp.content
