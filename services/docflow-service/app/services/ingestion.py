# app/services/ingestion.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from app.errors import BlobStorageError, IngestionError, UpstreamError
from app.events.bus import EventBus
from app.events.types import FILE_EVENTS_TOPIC, IngestionSource
from app.logger import get_logger
from app.schemas.envelope import FileEventEnvelope, PublishResult
from app.schemas.upload import SharePointFile
from app.services.blob_storage import BlobStorageService, StoredBlob
from app.services.graph_client import GraphClient
from app.services.scraper_client import ScraperClient

logger = get_logger("services.ingestion")

_PERMISSION_CODES = {"AuthorizationFailure", "AuthorizationPermissionMismatch", "AuthenticationFailed"}


def classify_storage_error(exc: Exception) -> Tuple[int, str, str]:
    """Map a storage failure to (http status, error code, user message)."""
    if isinstance(exc, BlobStorageError):
        if exc.status_code == 403 or exc.error_code in _PERMISSION_CODES:
            return 403, "PERMISSION_DENIED", "Access denied to storage service"
        if exc.error_code == "ContainerNotFound":
            return 503, "STORAGE_UNAVAILABLE", "Storage container not available"
        if exc.network:
            return 503, "NETWORK_ERROR", "Network error occurred during upload"
    return 500, "UPLOAD_ERROR", "Failed to upload file"


class IngestionService:
    """
    Stores files from each ingestion source and publishes one lifecycle
    envelope per outcome. Publishing never fails the ingestion itself.
    """

    def __init__(
        self,
        *,
        bus: EventBus,
        blob_storage: BlobStorageService,
        graph: Optional[GraphClient] = None,
        scraper: Optional[ScraperClient] = None,
    ) -> None:
        self.bus = bus
        self.blob_storage = blob_storage
        self.graph = graph or GraphClient()
        self.scraper = scraper or ScraperClient()

    async def publish_file_event_safely(self, envelope: FileEventEnvelope) -> Optional[PublishResult]:
        try:
            result = await self.bus.publish_event(FILE_EVENTS_TOPIC, envelope)
        except Exception:
            logger.exception(
                "Failed to publish %s for file=%s user=%s",
                envelope.event_type.value, envelope.file_name, envelope.user_id,
            )
            return None
        return result

    # ----------------- local upload -----------------

    async def ingest_local_upload(
        self,
        *,
        data: bytes,
        file_name: str,
        content_type: str,
        user_id: str,
        document_category: Optional[int] = None,
    ) -> StoredBlob:
        source = IngestionSource.USER_UPLOAD
        try:
            stored = await self.blob_storage.upload_file(
                data, file_name, content_type, user_id, source, document_category=document_category
            )
        except Exception as e:
            status_code, code, message = classify_storage_error(e)
            logger.error("Local upload failed file=%s user=%s code=%s: %s", file_name, user_id, code, e)
            await self.publish_file_event_safely(
                FileEventEnvelope.failure(
                    user_id=user_id,
                    file_name=file_name or "Unknown file",
                    error=str(e),
                    ingestion_source=source,
                    metadata={"errorCode": code, "statusCode": status_code},
                )
            )
            raise IngestionError(message, status_code=status_code, code=code, cause=str(e)) from e

        await self.publish_file_event_safely(
            FileEventEnvelope.success(
                user_id=user_id,
                file_name=file_name,
                document_id=stored.document_id,
                ingestion_source=source,
                metadata={
                    "fileSize": stored.size,
                    "blobUrl": stored.blob_url,
                    "workspaceId": stored.workspace_id,
                },
            )
        )
        return stored

    # ----------------- SharePoint -----------------

    async def ingest_sharepoint_files(
        self, *, files: List[SharePointFile], user_id: str, access_token: str
    ) -> List[Dict[str, Any]]:
        source = IngestionSource.SHAREPOINT
        results: List[Dict[str, Any]] = []
        for f in files:
            try:
                data = await self.graph.download_item(site_id=f.site_id, item_id=f.id, access_token=access_token)
                stored = await self.blob_storage.upload_file(
                    data, f.label, f.content_type or "application/octet-stream", user_id, source
                )
            except (UpstreamError, BlobStorageError) as e:
                logger.error("SharePoint ingest failed file=%s: %s", f.label, e)
                results.append({"fileName": f.label, "status": "error", "error": str(e)})
                await self.publish_file_event_safely(
                    FileEventEnvelope.failure(
                        user_id=user_id,
                        file_name=f.label,
                        error=str(e),
                        ingestion_source=source,
                        metadata={"errorCode": "SHAREPOINT_UPLOAD_ERROR"},
                    )
                )
                continue

            results.append({"fileName": f.label, "status": "success", "url": stored.blob_url})
            await self.publish_file_event_safely(
                FileEventEnvelope.success(
                    user_id=user_id,
                    file_name=f.label,
                    document_id=stored.document_id,
                    ingestion_source=source,
                    metadata={"blobUrl": stored.blob_url, "workspaceId": stored.workspace_id},
                )
            )
        return results

    # ----------------- web scrape -----------------

    async def ingest_web_url(self, *, url: str, workspace_id: str, user_id: str) -> Dict[str, Any]:
        try:
            data = await self.scraper.scrape(url=url, workspace_id=workspace_id)
        except UpstreamError as e:
            await self.publish_file_event_safely(
                self._scrape_failure(user_id, url, str(e), e.status_code or 500)
            )
            raise

        result = data.get("result") or {}
        if data.get("success") and result:
            upload = result.get("azure_upload") or {}
            doc_meta = result.get("document_metadata") or {}
            await self.publish_file_event_safely(
                FileEventEnvelope.success(
                    user_id=user_id,
                    file_name=result.get("url") or upload.get("blob_url") or url,
                    # Older scrape builds omit the guid
                    document_id=doc_meta.get("document_guid") or upload.get("blob_url") or url,
                    ingestion_source=IngestionSource.WEB_SCRAPED,
                    metadata={
                        "url": result.get("url"),
                        "fileSize": upload.get("file_size"),
                        "blobUrl": upload.get("blob_url"),
                        "workspaceId": result.get("workspace_id"),
                    },
                )
            )
        else:
            await self.publish_file_event_safely(
                self._scrape_failure(
                    user_id,
                    data.get("url") or url,
                    data.get("message") or data.get("error") or "Web scraping failed",
                    data.get("statusCode") or 500,
                    data.get("errorCode") or "SCRAPING_ERROR",
                )
            )
        return data

    @staticmethod
    def _scrape_failure(
        user_id: str, url: Optional[str], error: str, status_code: int, error_code: str = "SCRAPING_ERROR"
    ) -> FileEventEnvelope:
        return FileEventEnvelope.failure(
            user_id=user_id,
            file_name=url or "Web URL",
            error=error,
            ingestion_source=IngestionSource.WEB_SCRAPED,
            metadata={"url": url, "errorCode": error_code, "statusCode": status_code},
        )
