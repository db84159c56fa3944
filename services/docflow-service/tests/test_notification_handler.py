import pytest
from pydantic import ValidationError

from app.errors import NotificationStoreError
from app.handlers.notification_handler import NotificationHandler
from app.schemas.envelope import FileEventEnvelope


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _success_event(**overrides):
    event = FileEventEnvelope.success(
        user_id="u1", file_name="a.pdf", document_id="d1", ingestion_source=3
    ).to_wire()
    event.update(overrides)
    return event


async def test_success_event_creates_one_notification(dal):
    sleep = RecordingSleep()
    handler = NotificationHandler(dal, delay_seconds=5.0, sleep=sleep)

    await handler.handle_file_event(_success_event())

    [row] = await dal.get_user_notifications("u1")
    assert row.title == "Upload Successful"
    assert row.message == "a.pdf uploaded successfully"
    assert row.document_id == "d1"
    assert row.ingestion_source == 3
    assert row.notification_type == "upload_success"
    assert row.is_read is False
    assert sleep.calls == [5.0]


async def test_error_event_creates_failure_notification(dal):
    handler = NotificationHandler(dal)
    event = FileEventEnvelope.failure(
        user_id="u1", file_name="https://example.com/x", error="timeout", ingestion_source=2
    ).to_wire()

    await handler.handle_file_event(event)

    [row] = await dal.get_user_notifications("u1")
    assert row.title == "Upload Failed"
    assert row.message == "Failed to Import URL: timeout"
    assert row.notification_type == "upload_error"


async def test_error_reason_in_metadata_is_used(dal):
    handler = NotificationHandler(dal)
    await handler.handle_file_event(
        {
            "eventType": "file.uploaded.error",
            "userId": "u1",
            "fileName": "a.pdf",
            "ingestionSource": 1,
            "metadata": {"error": "item locked"},
        }
    )
    [row] = await dal.get_user_notifications("u1")
    assert row.message == "Failed to upload a.pdf from SharePoint: item locked"


async def test_unknown_event_type_is_ignored(dal):
    sleep = RecordingSleep()
    handler = NotificationHandler(dal, delay_seconds=5.0, sleep=sleep)

    await handler.handle_file_event({"eventType": "file.deleted", "userId": "u1"})
    await handler.handle_file_event({"userId": "u1"})

    assert await dal.get_user_notifications("u1") == []
    assert sleep.calls == []


async def test_no_delay_when_disabled(dal):
    sleep = RecordingSleep()
    handler = NotificationHandler(dal, delay_seconds=0, sleep=sleep)
    await handler.handle_file_event(_success_event())
    assert sleep.calls == []


async def test_malformed_success_event_raises(dal):
    handler = NotificationHandler(dal)
    event = _success_event()
    del event["documentId"]
    with pytest.raises(ValidationError):
        await handler.handle_file_event(event)


async def test_store_failure_propagates():
    class BrokenDAL:
        async def create_upload_success_notification(self, *args, **kwargs):
            raise NotificationStoreError("database is locked")

    handler = NotificationHandler(BrokenDAL())
    with pytest.raises(NotificationStoreError):
        await handler.handle_file_event(_success_event())


async def test_redelivery_creates_duplicate_by_default(dal):
    handler = NotificationHandler(dal)
    event = _success_event()
    await handler.handle_file_event(event)
    await handler.handle_file_event(event)
    assert len(await dal.get_user_notifications("u1")) == 2


async def test_redelivery_collapses_with_dedup(dal):
    handler = NotificationHandler(dal, dedup=True)
    event = _success_event()
    await handler.handle_file_event(event)
    await handler.handle_file_event(event)
    assert len(await dal.get_user_notifications("u1")) == 1


async def test_non_string_event_type_is_ignored(dal):
    handler = NotificationHandler(dal)
    await handler.handle_file_event({"eventType": ["file.uploaded.success"], "userId": "u1"})
    await handler.handle_file_event({"eventType": {"name": "x"}, "userId": "u1"})
    await handler.handle_file_event({"eventType": 3, "userId": "u1"})
    assert await dal.get_user_notifications("u1") == []


async def test_non_object_event_is_ignored(dal):
    handler = NotificationHandler(dal)
    await handler.handle_file_event([1, 2])
    await handler.handle_file_event("file.uploaded.success")
    assert await dal.get_user_notifications("u1") == []


async def test_dedup_keeps_distinct_uploads_of_same_file(dal):
    handler = NotificationHandler(dal, dedup=True)
    await handler.handle_file_event(_success_event(documentId="d1", timestamp="2024-05-01T10:15:01.000Z"))
    await handler.handle_file_event(_success_event(documentId="d2", timestamp="2024-05-01T10:15:20.000Z"))
    assert len(await dal.get_user_notifications("u1")) == 2
