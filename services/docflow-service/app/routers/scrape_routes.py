# app/routers/scrape_routes.py
from fastapi import APIRouter, Depends

from app.errors import UpstreamError
from app.routers.deps import CurrentUser, api_error, get_current_user, get_ingestion_service
from app.schemas.upload import WebScrapeRequest
from app.services.ingestion import IngestionService

router = APIRouter(prefix="/api", tags=["scrape"])


@router.post("/scrape-web-url")
async def scrape_web_url(
    payload: WebScrapeRequest,
    user: CurrentUser = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    try:
        data = await ingestion.ingest_web_url(url=payload.url, workspace_id=payload.workspace_id, user_id=user.id)
    except UpstreamError as e:
        # Upstream status is passed through; no response at all means the function was unreachable
        raise api_error(e.status_code or 503, str(e), e.payload.get("error_type") or "SCRAPING_ERROR")

    return {
        "success": True,
        "data": data,
        "message": data.get("message") or "Web URL scraped successfully",
    }
