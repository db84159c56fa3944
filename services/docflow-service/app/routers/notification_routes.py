# app/routers/notification_routes.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.routing import APIRoute

from app.dal.notification_dal import NotificationDAL
from app.routers.deps import CurrentUser, api_error, get_current_user, get_notification_dal
from app.schemas.notification import NotificationCreate, NotificationOut


NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class NoCacheRoute(APIRoute):
    """Stamps the no-cache headers on every response, error responses included."""

    def get_route_handler(self):
        original = super().get_route_handler()

        async def handler(request: Request):
            try:
                response = await original(request)
            except HTTPException as exc:
                exc.headers = {**(exc.headers or {}), **NO_CACHE_HEADERS}
                raise
            response.headers.update(NO_CACHE_HEADERS)
            return response

        return handler


router = APIRouter(prefix="/notifications", tags=["notifications"], route_class=NoCacheRoute)


@router.get("")
async def list_notifications(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    is_read: Optional[bool] = None,
    notification_type: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    rows = await dal.get_user_notifications(
        user.id, limit=limit, offset=offset, is_read=is_read, notification_type=notification_type
    )
    return {
        "success": True,
        "data": [NotificationOut.model_validate(r) for r in rows],
        "count": len(rows),
        "pagination": {"limit": limit, "offset": offset},
    }


@router.get("/unread-count")
async def unread_count(
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    return {"success": True, "unreadCount": await dal.get_unread_count(user.id)}


@router.put("/mark-all-read")
async def mark_all_read(
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    n = await dal.mark_all_as_read(user.id)
    return {"success": True, "message": f"{n} notifications marked as read"}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    if not await dal.mark_as_read(notification_id, user.id):
        raise api_error(404, "Notification not found or already read")
    return {"success": True, "message": "Notification marked as read"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    if not await dal.delete(notification_id, user.id):
        raise api_error(404, "Notification not found")
    return {"success": True, "message": "Notification deleted successfully"}


@router.delete("")
async def delete_all_notifications(
    user: CurrentUser = Depends(get_current_user),
    dal: NotificationDAL = Depends(get_notification_dal),
):
    n = await dal.delete_all(user.id)
    return {"success": True, "message": f"{n} notifications deleted"}


@router.post("", status_code=201)
async def create_notification(payload: NotificationCreate, dal: NotificationDAL = Depends(get_notification_dal)):
    """Internal/admin create; the event pipeline writes through the DAL directly."""
    if not payload.title or not payload.message:
        raise api_error(400, "Title and message are required")
    row = await dal.create(
        user_id=payload.user_id,
        title=payload.title,
        message=payload.message,
        document_id=payload.document_id,
        ingestion_source=payload.ingestion_source,
        notification_type=payload.notification_type,
    )
    return {
        "success": True,
        "data": NotificationOut.model_validate(row),
        "message": "Notification created successfully",
    }
