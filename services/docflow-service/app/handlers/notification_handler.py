# app/handlers/notification_handler.py
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict

from app.dal.notification_dal import NotificationDAL
from app.events.types import EventType, is_known_event
from app.logger import get_logger
from app.schemas.envelope import FileEventEnvelope

logger = get_logger("handlers.notifications")


class NotificationHandler:
    """
    Turns file lifecycle envelopes into notification rows.

    Failures propagate so the bus returns the message to the queue. Unknown
    event types are ignored.
    """

    def __init__(
        self,
        dal: NotificationDAL,
        *,
        delay_seconds: float = 0.0,
        dedup: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._dal = dal
        self._delay_seconds = delay_seconds
        self._dedup = dedup
        self._sleep = sleep

    async def handle_file_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("eventType") if isinstance(event, dict) else None
        if not is_known_event(event_type):
            logger.debug("Ignoring event type %r", event_type)
            return

        envelope = FileEventEnvelope.model_validate(event)
        logger.info(
            "Received %s for file=%s user=%s", envelope.event_type.value, envelope.file_name, envelope.user_id
        )

        # Simulated processing latency
        if self._delay_seconds > 0:
            await self._sleep(self._delay_seconds)

        dedup_key = envelope.idempotency_key() if self._dedup else None
        if envelope.event_type is EventType.FILE_UPLOADED_SUCCESS:
            await self._dal.create_upload_success_notification(
                envelope.user_id,
                envelope.file_name,
                envelope.document_id,
                envelope.ingestion_source,
                dedup_key=dedup_key,
            )
            logger.info("Success notification stored for user=%s", envelope.user_id)
        else:
            await self._dal.create_upload_error_notification(
                envelope.user_id,
                envelope.file_name,
                envelope.error or "Unknown error occurred",
                envelope.ingestion_source,
                dedup_key=dedup_key,
            )
            logger.info("Error notification stored for user=%s", envelope.user_id)
