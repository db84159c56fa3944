# app/dal/notification_dal.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import NotificationStoreError
from app.events.types import IngestionSource, source_name
from app.logger import get_logger
from app.models.notification import Base, Notification, NotificationType

logger = get_logger("dal.notifications")

__all__ = ["NotificationDAL"]


class NotificationDAL:
    """
    CRUD over the notifications table.

    Every statement runs in its own session/transaction; concurrent writers
    for the same user are not coordinated beyond statement atomicity.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._sessions = session_maker

    async def ensure_schema(self) -> None:
        bind = self._sessions.kw["bind"]
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # ----------------- CRUD -----------------

    async def create(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        document_id: Optional[str] = None,
        ingestion_source: Optional[int] = None,
        notification_type: str = NotificationType.upload.value,
        dedup_key: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Notification:
        row = Notification(
            user_id=user_id,
            title=title,
            message=message,
            document_id=document_id,
            ingestion_source=ingestion_source,
            notification_type=notification_type,
            is_read=False,
            dedup_key=dedup_key,
        )
        if created_at is not None:
            row.created_at = created_at

        try:
            async with self._sessions() as session:
                if dedup_key is not None:
                    existing = await self._by_dedup_key(session, dedup_key)
                    if existing is not None:
                        logger.info("Notification with dedup key %s already exists; skipping insert", dedup_key[:12])
                        return existing
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost an insert race on dedup_key
                    await session.rollback()
                    if dedup_key is None:
                        raise
                    existing = await self._by_dedup_key(session, dedup_key)
                    if existing is None:
                        raise
                    return existing
                await session.refresh(row)
                return row
        except SQLAlchemyError as e:
            logger.exception("Failed to create notification for user=%s", user_id)
            raise NotificationStoreError(f"Failed to create notification: {e}") from e

    async def get_user_notifications(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        is_read: Optional[bool] = None,
        notification_type: Optional[str] = None,
    ) -> List[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if is_read is not None:
            stmt = stmt.where(Notification.is_read == is_read)
        if notification_type:
            stmt = stmt.where(Notification.notification_type == notification_type)
        stmt = stmt.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
        try:
            async with self._sessions() as session:
                return list((await session.scalars(stmt)).all())
        except SQLAlchemyError as e:
            raise NotificationStoreError(f"Failed to fetch notifications: {e}") from e

    async def get_unread_count(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        try:
            async with self._sessions() as session:
                return int(await session.scalar(stmt) or 0)
        except SQLAlchemyError as e:
            raise NotificationStoreError(f"Failed to get unread count: {e}") from e

    async def mark_as_read(self, notification_id: str, user_id: str) -> int:
        return await self._execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True),
            "mark notification as read",
        )

    async def mark_all_as_read(self, user_id: str) -> int:
        return await self._execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True),
            "mark all notifications as read",
        )

    async def delete(self, notification_id: str, user_id: str) -> int:
        return await self._execute(
            delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id),
            "delete notification",
        )

    async def delete_all(self, user_id: str) -> int:
        return await self._execute(
            delete(Notification).where(Notification.user_id == user_id),
            "delete all notifications",
        )

    # ----------------- upload outcomes -----------------

    async def create_upload_success_notification(
        self,
        user_id: str,
        file_name: str,
        document_id: Optional[str],
        ingestion_source: int,
        *,
        dedup_key: Optional[str] = None,
    ) -> Notification:
        return await self.create(
            user_id=user_id,
            title="Upload Successful",
            message=f"{file_name} uploaded successfully",
            document_id=document_id,
            ingestion_source=ingestion_source,
            notification_type=NotificationType.upload_success.value,
            dedup_key=dedup_key,
        )

    async def create_upload_error_notification(
        self,
        user_id: str,
        file_name: str,
        error: str,
        ingestion_source: int,
        *,
        dedup_key: Optional[str] = None,
    ) -> Notification:
        if ingestion_source == IngestionSource.WEB_SCRAPED:
            message = f"Failed to Import URL: {error}"
        else:
            message = f"Failed to upload {file_name} from {source_name(ingestion_source)}: {error}"
        return await self.create(
            user_id=user_id,
            title="Upload Failed",
            message=message,
            document_id=None,
            ingestion_source=ingestion_source,
            notification_type=NotificationType.upload_error.value,
            dedup_key=dedup_key,
        )

    # ----------------- helpers -----------------

    @staticmethod
    async def _by_dedup_key(session: AsyncSession, dedup_key: str) -> Optional[Notification]:
        return await session.scalar(select(Notification).where(Notification.dedup_key == dedup_key))

    async def _execute(self, stmt, action: str) -> int:
        try:
            async with self._sessions() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.exception("Failed to %s", action)
            raise NotificationStoreError(f"Failed to {action}: {e}") from e
