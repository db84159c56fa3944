# app/routers/sharepoint_routes.py
from fastapi import APIRouter, Depends, Request

from app.routers.deps import CurrentUser, api_error, get_current_user, get_ingestion_service
from app.schemas.upload import SharePointUploadRequest
from app.services.ingestion import IngestionService

router = APIRouter(prefix="/sharepoint", tags=["sharepoint"])


@router.post("/upload")
async def upload_sharepoint_files(
    payload: SharePointUploadRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """Copy SharePoint drive items into blob storage, one lifecycle event per file."""
    auth = request.headers.get("authorization") or ""
    token = auth[7:] if auth.lower().startswith("bearer ") else ""
    if not token:
        raise api_error(401, "SharePoint access token is required", "NO_ACCESS_TOKEN")
    if not user.email:
        raise api_error(
            401, "User email not found. Please ensure you are properly authenticated.", "NO_USER_EMAIL"
        )

    results = await ingestion.ingest_sharepoint_files(files=payload.files, user_id=user.id, access_token=token)
    return {"success": True, "results": results}
