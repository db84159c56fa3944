#services/docflow-service/app/main.py
import logging
import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from app.config import settings
from app.logger import setup_logging
from app.dal.notification_dal import NotificationDAL
from app.db.session import close_db, get_session_maker
from app.errors import NotificationStoreError
from app.events.bus import EventBus
from app.events.subscribers import EventSubscribers
from app.handlers.notification_handler import NotificationHandler
from app.middleware.correlation import CorrelationIdMiddleware
from app.routers.notification_routes import router as notification_router
from app.routers.scrape_routes import router as scrape_router
from app.routers.sharepoint_routes import router as sharepoint_router
from app.routers.upload_routes import router as upload_router
from app.services.blob_storage import BlobStorageService
from app.services.ingestion import IngestionService

setup_logging()
log = logging.getLogger("docflow")

app = FastAPI(
    title="Docflow – Ingestion Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    start = time.time()
    log.info(
        "REQ method=%s path=%s query=%s client=%s",
        request.method,
        request.url.path,
        str(request.url.query),
        request.client.host if request.client else None,
    )
    try:
        resp: Response = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)
        log.info("RES status=%s dur_ms=%s path=%s", resp.status_code, dur_ms, request.url.path)
        return resp
    except Exception:
        dur_ms = int((time.time() - start) * 1000)
        log.exception("ERR dur_ms=%s path=%s", dur_ms, request.url.path)
        raise


# Outside the logging middleware so REQ/RES lines carry the request id
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["message"] = str(exc.detail)
    return ORJSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(NotificationStoreError)
async def store_error_handler(request: Request, exc: NotificationStoreError):
    return ORJSONResponse(
        {"success": False, "message": "Notification store error", "error": str(exc)},
        status_code=500,
    )


app.include_router(upload_router)
app.include_router(sharepoint_router)
app.include_router(scrape_router)
app.include_router(notification_router)


@app.get("/healthz")
async def health():
    return {"status": "ok", "service": settings.SERVICE_NAME, "env": settings.ENV}


@app.get("/events/status")
async def events_status(request: Request):
    return {"success": True, "data": request.app.state.event_bus.status()}


@app.on_event("startup")
async def startup():
    log.info("startup begin db=%s queue=%s", settings.DATABASE_URL.split("@")[-1], settings.SERVICE_BUS_QUEUE_NAME)

    dal = NotificationDAL(get_session_maker())
    await dal.ensure_schema()
    app.state.notification_dal = dal

    # Connection failures abort startup
    bus = EventBus.from_settings(settings)
    await bus.connect()
    app.state.event_bus = bus

    handler = NotificationHandler(
        dal,
        delay_seconds=settings.NOTIFICATION_HANDLER_DELAY_SECONDS,
        dedup=settings.NOTIFICATION_DEDUP_ENABLED,
    )
    app.state.subscribers = EventSubscribers(bus, handler)
    await app.state.subscribers.start()

    app.state.ingestion = IngestionService(bus=bus, blob_storage=BlobStorageService.from_settings(settings))
    log.info("startup complete")


@app.on_event("shutdown")
async def shutdown():
    log.info("Shutting down...")
    subscribers = getattr(app.state, "subscribers", None)
    if subscribers:
        await subscribers.stop()
    bus = getattr(app.state, "event_bus", None)
    if bus:
        await bus.close()
    await close_db()
    log.info("Shutdown complete")


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=True,
    )
