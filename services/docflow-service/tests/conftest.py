from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.dal.notification_dal import NotificationDAL
from app.events.bus import EventBus
from app.services.blob_storage import BlobStorageService
from app.services.graph_client import GraphClient
from app.services.ingestion import IngestionService
from app.services.scraper_client import ScraperClient


# ---------------------------------------------------------------------------
# In-memory stand-ins for the aio-pika connection/channel/queue objects
# ---------------------------------------------------------------------------

class FakeIncomingMessage:
    def __init__(self, message, *, redelivered: bool = False, body: Optional[bytes] = None):
        self.body = message.body if body is None else body
        self.message_id = getattr(message, "message_id", None)
        self.type = getattr(message, "type", None)
        self.headers = getattr(message, "headers", {})
        self.redelivered = redelivered
        self.acked = False
        self.nacked = False
        self.rejected = False
        self.requeue: Optional[bool] = None

    async def ack(self):
        self.acked = True

    async def nack(self, requeue: bool = True):
        self.nacked = True
        self.requeue = requeue

    async def reject(self, requeue: bool = False):
        self.rejected = True
        self.requeue = requeue


class FakeQueue:
    def __init__(self, name: str, arguments: Optional[dict]):
        self.name = name
        self.arguments = arguments or {}
        self.messages: list = []
        self.consumers: Dict[str, Callable] = {}
        self.no_ack: Optional[bool] = None

    async def consume(self, callback, no_ack: bool = False):
        tag = f"ctag-{self.name}-{len(self.consumers) + 1}"
        self.consumers[tag] = callback
        self.no_ack = no_ack
        return tag

    async def cancel(self, consumer_tag: str):
        self.consumers.pop(consumer_tag, None)


class FakeExchange:
    def __init__(self, channel: "FakeChannel"):
        self.channel = channel

    async def publish(self, message, routing_key: str):
        if self.channel.fail_publish:
            raise ConnectionError("channel closed")
        self.channel.published.append((routing_key, message))
        queue = self.channel.queues.get(routing_key)
        if queue is not None:
            queue.messages.append(message)


class FakeChannel:
    def __init__(self):
        self.is_closed = False
        self.queues: Dict[str, FakeQueue] = {}
        self.published: list = []
        self.prefetch_count: Optional[int] = None
        self.fail_publish = False
        self.default_exchange = FakeExchange(self)

    async def set_qos(self, prefetch_count: int):
        self.prefetch_count = prefetch_count

    async def declare_queue(self, name: str, durable: bool = False, arguments: Optional[dict] = None):
        if name not in self.queues:
            self.queues[name] = FakeQueue(name, arguments)
        return self.queues[name]

    async def close(self):
        self.is_closed = True


class FakeConnection:
    def __init__(self):
        self.is_closed = False
        self._channel = FakeChannel()

    async def channel(self):
        return self._channel

    async def close(self):
        self.is_closed = True


class FakeBroker:
    """Hands out one FakeConnection and delivers queued messages on demand."""

    def __init__(self):
        self.connection = FakeConnection()
        self.connect_calls: list = []

    @property
    def channel(self) -> FakeChannel:
        return self.connection._channel

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        return self.connection

    async def deliver(self, queue_name: str, *, redelivered: bool = False) -> List[FakeIncomingMessage]:
        """Push every queued message to the first consumer, once."""
        queue = self.channel.queues[queue_name]
        delivered = []
        while queue.messages:
            incoming = FakeIncomingMessage(queue.messages.pop(0), redelivered=redelivered)
            callback = next(iter(queue.consumers.values()))
            await callback(incoming)
            delivered.append(incoming)
        return delivered


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
async def bus(broker) -> EventBus:
    b = EventBus(
        url="amqp://test/",
        topic_queues={"file-events": "file-events"},
        max_concurrent_calls=10,
        connect_factory=broker.connect,
    )
    await b.connect()
    yield b
    await b.close()


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def dal(session_maker) -> NotificationDAL:
    d = NotificationDAL(session_maker)
    await d.ensure_schema()
    return d


# ---------------------------------------------------------------------------
# Outbound HTTP
# ---------------------------------------------------------------------------

class FakeStorage:
    """MockTransport handler imitating the Blob REST endpoints used by the service."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.fail_code: Optional[str] = None
        self.network_error = False
        self.list_xml = (
            b"<?xml version='1.0' encoding='utf-8'?><EnumerationResults><Blobs>"
            b"<Blob><Name>originals/u1_d1_3_a.pdf</Name><Properties>"
            b"<Content-Length>42</Content-Length><Content-Type>application/pdf</Content-Type>"
            b"<Last-Modified>Mon, 01 Jan 2024 00:00:00 GMT</Last-Modified></Properties></Blob>"
            b"</Blobs><NextMarker /></EnumerationResults>"
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_error:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status:
            headers = {"x-ms-error-code": self.fail_code} if self.fail_code else {}
            return httpx.Response(self.fail_status, headers=headers)
        if request.method == "PUT":
            return httpx.Response(201)
        if request.method == "DELETE":
            return httpx.Response(202)
        if request.url.params.get("comp") == "list":
            return httpx.Response(200, content=self.list_xml, headers={"content-type": "application/xml"})
        return httpx.Response(200)

    @property
    def uploads(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def blob_service(storage) -> BlobStorageService:
    return BlobStorageService(
        account_url="https://acct.blob.core.windows.net",
        container="docs",
        directory="originals",
        sas_token="?sv=2021&sig=abc",
        transport=httpx.MockTransport(storage),
    )


@pytest.fixture
def graph_responses() -> Dict[str, httpx.Response]:
    """item id -> response returned by the fake Graph endpoint."""
    return {}


@pytest.fixture
def scrape_response() -> dict:
    return {"status": 200, "json": {"success": True}}


@pytest.fixture
def ingestion(bus, blob_service, graph_responses, scrape_response) -> IngestionService:
    def graph_handler(request: httpx.Request) -> httpx.Response:
        item_id = request.url.path.split("/items/")[1].split("/")[0]
        return graph_responses.get(item_id, httpx.Response(404, json={"error": {"message": "itemNotFound"}}))

    def scrape_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(scrape_response["status"], json=scrape_response["json"])

    return IngestionService(
        bus=bus,
        blob_storage=blob_service,
        graph=GraphClient(base_url="https://graph.test/v1.0", transport=httpx.MockTransport(graph_handler)),
        scraper=ScraperClient(endpoint="https://scrape.test/api/scrape", transport=httpx.MockTransport(scrape_handler)),
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

@pytest.fixture
async def client(dal, bus, ingestion):
    from app.main import app

    app.state.notification_dal = dal
    app.state.event_bus = bus
    app.state.ingestion = ingestion
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


ALICE = {"x-user-id": "alice-id", "x-user-email": "alice@nitorinfotech.com"}


@pytest.fixture
def alice_headers() -> Dict[str, str]:
    return dict(ALICE)
