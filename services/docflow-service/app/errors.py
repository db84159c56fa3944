# app/errors.py
from __future__ import annotations

from typing import Optional


class DocflowError(Exception):
    """Base class for errors raised by docflow components."""


class BusNotConnectedError(DocflowError):
    def __init__(self, action: str = "publish events"):
        super().__init__(f"Message bus is not connected. Cannot {action}.")


class UnknownTopicError(DocflowError):
    def __init__(self, topic: str):
        super().__init__(f"No queue is mapped to topic '{topic}'")
        self.topic = topic


class NotificationStoreError(DocflowError):
    pass


class BlobStorageError(DocflowError):
    """
    Storage call failed. `status_code` and `error_code` come from the storage
    response when there was one; `network` is set for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        network: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.network = network


class UpstreamError(DocflowError):
    """A Graph or scrape function call failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class IngestionError(DocflowError):
    """A store attempt failed; carries the HTTP status and code to report."""

    def __init__(self, message: str, *, status_code: int, code: str, cause: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.cause = cause
