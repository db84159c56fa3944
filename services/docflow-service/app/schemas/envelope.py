# app/schemas/envelope.py
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.events.types import EventType


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class FileEventEnvelope(BaseModel):
    """
    Wire payload describing one file ingestion outcome.

    Serialized with camelCase keys (`eventType`, `userId`, ...). Success
    envelopes carry `documentId`; failure envelopes carry `error`. Never both.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: EventType
    user_id: str = Field(min_length=1)
    file_name: str
    ingestion_source: int
    timestamp: str = Field(default_factory=utc_now_iso)
    document_id: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_metadata_error(cls, data: Any) -> Any:
        # Older producers put the failure reason under metadata.error
        if not isinstance(data, dict):
            return data
        meta = data.get("metadata")
        if isinstance(meta, dict) and "error" in meta and not (data.get("error")):
            data = dict(data)
            meta = dict(meta)
            data["error"] = meta.pop("error")
            data["metadata"] = meta
        return data

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "FileEventEnvelope":
        if self.event_type is EventType.FILE_UPLOADED_SUCCESS:
            if not self.document_id:
                raise ValueError("documentId is required on success envelopes")
            if self.error is not None:
                raise ValueError("error is not allowed on success envelopes")
        else:
            if self.document_id is not None:
                raise ValueError("documentId is not allowed on error envelopes")
            if not self.error:
                self.error = "Unknown error occurred"
        return self

    @classmethod
    def success(
        cls,
        *,
        user_id: str,
        file_name: str,
        document_id: str,
        ingestion_source: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "FileEventEnvelope":
        return cls(
            event_type=EventType.FILE_UPLOADED_SUCCESS,
            user_id=user_id,
            file_name=file_name,
            document_id=document_id,
            ingestion_source=int(ingestion_source),
            metadata=metadata or {},
        )

    @classmethod
    def failure(
        cls,
        *,
        user_id: str,
        file_name: str,
        error: str,
        ingestion_source: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "FileEventEnvelope":
        return cls(
            event_type=EventType.FILE_UPLOADED_ERROR,
            user_id=user_id,
            file_name=file_name,
            error=error,
            ingestion_source=int(ingestion_source),
            metadata=metadata or {},
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def idempotency_key(self) -> str:
        """sha256 over user, file, event type, outcome (document id or error) and the timestamp's minute bucket."""
        outcome = self.document_id if self.document_id is not None else (self.error or "")
        parts = [self.user_id, self.file_name, self.event_type.value, outcome, self.timestamp[:16]]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class PublishResult(BaseModel):
    success: bool = True
    message_id: str
    queue: str
