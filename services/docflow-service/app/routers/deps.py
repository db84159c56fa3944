# app/routers/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from app.config import settings
from app.dal.notification_dal import NotificationDAL
from app.events.bus import EventBus
from app.services.ingestion import IngestionService


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def api_error(status_code: int, message: str, code: Optional[str] = None, **extra) -> HTTPException:
    detail = {"message": message}
    if code:
        detail["code"] = code
    detail.update(extra)
    return HTTPException(status_code, detail=detail)


def get_current_user(request: Request) -> CurrentUser:
    user_id = request.headers.get(settings.USER_ID_HEADER)
    if not user_id:
        raise api_error(
            401, "User id not found. Please ensure you are properly authenticated.", "NO_USER_ID"
        )
    return CurrentUser(id=user_id, email=request.headers.get(settings.USER_EMAIL_HEADER))


def get_notification_dal(request: Request) -> NotificationDAL:
    return request.app.state.notification_dal


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus
