# app/services/scraper_client.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.errors import UpstreamError
from app.logger import get_logger

log = get_logger("services.scraper")


class ScraperClient:
    """Client for the web scrape function, which fetches a URL and stores it as a blob."""

    def __init__(
        self,
        *,
        endpoint: str = settings.SCRAPE_FUNCTION_URL,
        timeout: float = settings.SCRAPE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint
        self._timeout = timeout
        self._transport = transport

    async def scrape(self, *, url: str, workspace_id: str) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, json={"url": url, "workspace_id": workspace_id})
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            try:
                payload = e.response.json()
            except ValueError:
                payload = {"message": e.response.text}
            log.error("scrape failed url=%s status=%s", url, e.response.status_code)
            raise UpstreamError(
                payload.get("message") or f"Scrape failed ({e.response.status_code})",
                status_code=e.response.status_code,
                payload=payload,
            ) from e
        except httpx.HTTPError as e:
            log.error("scrape failed url=%s err=%s", url, e)
            raise UpstreamError(f"Failed to scrape web URL: {e}") from e

        log.info("scrape done url=%s success=%s", url, data.get("success"))
        return data
