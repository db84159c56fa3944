# app/events/types.py
from __future__ import annotations
from enum import Enum, IntEnum

# Logical topic for file lifecycle events, and the one subscription on it
FILE_EVENTS_TOPIC = "file-events"
NOTIFICATION_SUBSCRIPTION = "notification-service"


class EventType(str, Enum):
    FILE_UPLOADED_SUCCESS = "file.uploaded.success"
    FILE_UPLOADED_ERROR = "file.uploaded.error"


class IngestionSource(IntEnum):
    SHAREPOINT = 1
    WEB_SCRAPED = 2
    USER_UPLOAD = 3
    SUMMARY = 4
    AGENT = 5
    CHAT = 6
    EMAIL = 7
    WEB_CLIP = 8


SOURCE_NAMES = {
    IngestionSource.SHAREPOINT: "SharePoint",
    IngestionSource.WEB_SCRAPED: "Web Scraped",
    IngestionSource.USER_UPLOAD: "Local Upload",
}


def source_name(code: int | None) -> str:
    """
    Display name for an ingestion source code.

        source_name(1) -> "SharePoint"
        source_name(7) -> "Unknown Source"
    """
    try:
        return SOURCE_NAMES.get(IngestionSource(code), "Unknown Source")
    except (ValueError, TypeError):
        return "Unknown Source"


def is_known_event(event_type: object) -> bool:
    return isinstance(event_type, str) and event_type in {e.value for e in EventType}
