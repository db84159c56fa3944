from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    message: str
    document_id: Optional[str] = None
    ingestion_source: Optional[int] = None
    notification_type: str
    is_read: bool
    created_at: datetime


class NotificationCreate(BaseModel):
    user_id: str
    title: Optional[str] = None
    message: Optional[str] = None
    document_id: Optional[str] = None
    ingestion_source: Optional[int] = None
    notification_type: str = "upload"
