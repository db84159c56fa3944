# app/models/notification.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class NotificationType(str, Enum):
    upload = "upload"
    upload_success = "upload_success"
    upload_error = "upload_error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Notification(Base):
    """One user-facing notification row. Written by the notification handler."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    document_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ingestion_source: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False, default=NotificationType.upload.value)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    # sha256 of the source envelope when dedup is enabled
    dedup_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)


__all__ = ["Base", "Notification", "NotificationType"]
