# app/services/blob_storage.py
from __future__ import annotations

import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.config import Settings, settings as default_settings
from app.errors import BlobStorageError
from app.logger import get_logger

logger = get_logger("services.blob_storage")


@dataclass
class StoredBlob:
    document_id: str
    workspace_id: str
    blob_name: str
    blob_url: str
    size: int


class BlobStorageService:
    """
    Azure Blob Storage over its REST API, authorised with a container SAS token.

    Blobs are named `<directory>/<workspaceId>_<documentId>_<source>_<fileName>`.
    """

    def __init__(
        self,
        *,
        account_url: str,
        container: str,
        directory: str = "originals",
        sas_token: Optional[str] = None,
        api_version: str = "2021-08-06",
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.account_url = account_url.rstrip("/")
        self.container = container
        self.directory = directory.strip("/")
        self._sas_token = (sas_token or "").lstrip("?")
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, s: Settings = default_settings, **overrides: Any) -> "BlobStorageService":
        kwargs: Dict[str, Any] = dict(
            account_url=s.storage_account_url,
            container=s.AZURE_STORAGE_CONTAINER,
            directory=s.AZURE_STORAGE_DIRECTORY,
            sas_token=s.AZURE_STORAGE_SAS_TOKEN,
            api_version=s.AZURE_STORAGE_API_VERSION,
            timeout=s.HTTP_TIMEOUT_SECONDS,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ----------------- urls -----------------

    @property
    def container_url(self) -> str:
        return f"{self.account_url}/{self.container}"

    def blob_url(self, blob_name: str) -> str:
        return f"{self.container_url}/{quote(blob_name, safe='/')}"

    def _query(self, params: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        # SAS fields ride along with every request's own query
        query = dict(httpx.QueryParams(self._sas_token))
        query.update(params or {})
        return query

    def build_blob_name(self, workspace_id: str, document_id: str, ingestion_source: int, file_name: str) -> str:
        return f"{self.directory}/{workspace_id}_{document_id}_{int(ingestion_source)}_{file_name}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"x-ms-version": self._api_version},
        )

    async def _send(
        self, method: str, url: str, *, params: Optional[Dict[str, str]] = None, **kwargs: Any
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                resp = await client.request(method, url, params=self._query(params), **kwargs)
        except httpx.TimeoutException as e:
            raise BlobStorageError(f"Storage request timeout: {e}", network=True) from e
        except httpx.TransportError as e:
            raise BlobStorageError(f"Storage network error: {e}", network=True) from e

        if resp.status_code >= 400:
            error_code = resp.headers.get("x-ms-error-code")
            logger.error(
                "Storage %s %s failed status=%s code=%s", method, url, resp.status_code, error_code
            )
            raise BlobStorageError(
                f"Storage request failed ({resp.status_code} {error_code or resp.reason_phrase})",
                status_code=resp.status_code,
                error_code=error_code,
            )
        return resp

    # ----------------- operations -----------------

    async def upload_file(
        self,
        data: bytes,
        file_name: str,
        content_type: str,
        workspace_id: str,
        ingestion_source: int,
        *,
        document_category: Optional[int] = None,
    ) -> StoredBlob:
        document_id = str(uuid.uuid4())
        blob_name = self.build_blob_name(workspace_id, document_id, ingestion_source, file_name)
        url = self.blob_url(blob_name)

        headers = {
            "x-ms-blob-type": "BlockBlob",
            "x-ms-blob-content-type": content_type or "application/octet-stream",
            "x-ms-meta-documentid": document_id,
            "x-ms-meta-ingestionsource": str(int(ingestion_source)),
        }
        if document_category is not None:
            headers["x-ms-meta-category"] = str(document_category)

        logger.info("Uploading blob %s (%d bytes)", blob_name, len(data))
        await self._send("PUT", url, content=data, headers=headers)
        logger.info("Blob uploaded %s", url)
        return StoredBlob(
            document_id=document_id,
            workspace_id=workspace_id,
            blob_name=blob_name,
            blob_url=url,
            size=len(data),
        )

    async def delete_file(self, blob_name: str) -> None:
        await self._send("DELETE", self.blob_url(blob_name))
        logger.info("Blob deleted %s", blob_name)

    async def list_files(self) -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        marker: Optional[str] = None
        while True:
            params = {"restype": "container", "comp": "list", "prefix": f"{self.directory}/"}
            if marker:
                params["marker"] = marker
            resp = await self._send("GET", self.container_url, params=params)
            root = ET.fromstring(resp.content)
            for blob in root.iter("Blob"):
                props = blob.find("Properties")
                name = blob.findtext("Name") or ""
                files.append({
                    "name": name,
                    "url": self.blob_url(name),
                    "size": int(props.findtext("Content-Length") or 0) if props is not None else 0,
                    "contentType": props.findtext("Content-Type") if props is not None else None,
                    "lastModified": props.findtext("Last-Modified") if props is not None else None,
                })
            marker = root.findtext("NextMarker")
            if not marker:
                return files

    async def validate_connection(self) -> bool:
        try:
            await self._send("GET", self.container_url, params={"restype": "container"})
            return True
        except BlobStorageError as e:
            logger.warning("Storage connection check failed: %s", e)
            return False

    def get_storage_info(self) -> Dict[str, Any]:
        return {
            "accountUrl": self.account_url,
            "containerName": self.container,
            "blobDirectory": self.directory,
            "authenticationMethod": "SAS Token" if self._sas_token else "Anonymous",
        }
