# app/routers/upload_routes.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.config import settings
from app.errors import BlobStorageError, IngestionError
from app.logger import get_logger
from app.routers.deps import CurrentUser, api_error, get_current_user, get_ingestion_service
from app.schemas.envelope import utc_now_iso
from app.services.ingestion import IngestionService

router = APIRouter(prefix="/upload", tags=["upload"])
logger = get_logger("routers.upload")


@router.post("/pdf")
async def upload_pdf(
    pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
    category: Optional[str] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    if pdf_file is None or not pdf_file.filename:
        raise api_error(400, "No file uploaded", "NO_FILE")

    allowed = settings.ALLOWED_MIME_TYPES
    if pdf_file.content_type not in allowed:
        raise api_error(
            400,
            f"Only {', '.join(allowed)} files are allowed",
            "INVALID_FILE_TYPE",
            receivedType=pdf_file.content_type,
        )

    max_bytes = settings.MAX_UPLOAD_BYTES
    data = b""
    if pdf_file.size is None or pdf_file.size <= max_bytes:
        # At most one byte past the limit is buffered
        data = await pdf_file.read(max_bytes + 1)
    if len(data) > max_bytes or (pdf_file.size or 0) > max_bytes:
        raise api_error(
            400,
            f"File size exceeds maximum limit of {max_bytes // (1024 * 1024)}MB",
            "FILE_TOO_LARGE",
            fileSize=pdf_file.size if pdf_file.size is not None else len(data),
            maxSize=max_bytes,
        )

    if not user.email:
        raise api_error(
            401, "User email not found. Please ensure you are properly authenticated.", "NO_USER_EMAIL"
        )

    document_category = None
    if category not in (None, ""):
        try:
            document_category = int(category)
        except ValueError:
            raise api_error(400, "Category must be an integer", "INVALID_CATEGORY")

    logger.info(
        "Upload file=%s type=%s size=%d user=%s", pdf_file.filename, pdf_file.content_type, len(data), user.email
    )
    try:
        stored = await ingestion.ingest_local_upload(
            data=data,
            file_name=pdf_file.filename,
            content_type=pdf_file.content_type,
            user_id=user.id,
            document_category=document_category,
        )
    except IngestionError as e:
        raise api_error(e.status_code, str(e), e.code, error=e.cause, timestamp=utc_now_iso())

    return {
        "success": True,
        "message": "File uploaded successfully",
        "data": {
            "fileName": pdf_file.filename,
            "fileSize": stored.size,
            "blobUrl": stored.blob_url,
            "blobName": stored.blob_name,
            "documentId": stored.document_id,
            "workspaceId": stored.workspace_id,
            "uploadDate": utc_now_iso(),
        },
    }


@router.get("/status")
async def upload_status(ingestion: IngestionService = Depends(get_ingestion_service)):
    storage = ingestion.blob_storage
    if not await storage.validate_connection():
        raise api_error(503, "Blob storage service is not available", status="unavailable")
    return {
        "success": True,
        "message": "Upload service is ready",
        "status": "ready",
        "config": storage.get_storage_info(),
    }


@router.get("/files")
async def list_uploaded_files(
    user: CurrentUser = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    try:
        files = await ingestion.blob_storage.list_files()
    except BlobStorageError as e:
        raise api_error(500, "Failed to list files", error=str(e))
    return {
        "success": True,
        "message": "Files retrieved successfully",
        "data": {"files": files, "totalCount": len(files)},
    }


@router.delete("/files/{blob_name:path}")
async def delete_uploaded_file(
    blob_name: str,
    user: CurrentUser = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    try:
        await ingestion.blob_storage.delete_file(blob_name)
    except BlobStorageError as e:
        if e.status_code == 404:
            raise api_error(404, "File not found")
        raise api_error(500, "Failed to delete file", error=str(e))
    return {"success": True, "message": "File deleted successfully"}
