# app/events/subscribers.py
from __future__ import annotations

from typing import List

from app.events.bus import EventBus
from app.events.types import FILE_EVENTS_TOPIC, NOTIFICATION_SUBSCRIPTION
from app.handlers.notification_handler import NotificationHandler
from app.logger import get_logger

logger = get_logger("events.subscribers")


class EventSubscribers:
    """Wires the in-process consumers onto the bus. Add new consumers in start()."""

    def __init__(self, bus: EventBus, notification_handler: NotificationHandler) -> None:
        self._bus = bus
        self._notification_handler = notification_handler
        self._tags: List[str] = []

    @property
    def started(self) -> bool:
        return bool(self._tags)

    async def start(self) -> None:
        if self._tags:
            return
        logger.info("Starting event subscribers...")
        tag = await self._bus.subscribe(
            FILE_EVENTS_TOPIC,
            NOTIFICATION_SUBSCRIPTION,
            self._notification_handler.handle_file_event,
        )
        self._tags.append(tag)
        logger.info("Event subscribers started: %d", len(self._tags))

    async def stop(self) -> None:
        logger.info("Stopping event subscribers...")
        while self._tags:
            await self._bus.unsubscribe(self._tags.pop())
