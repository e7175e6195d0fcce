import asyncio
import json
import logging

import pytest
from sse_starlette.sse import EventSourceResponse

from connections import KEEPALIVE_INTERVAL, ConnectionManager, short_token
from conftest import rpc_body
from sse import _stream


class SlowDispatcher:
    """Answers each request after the delay named in its params."""

    def __init__(self):
        self.finished = []

    def server_metadata(self):
        return {"protocolVersion": "2024-11-05", "serverInfo": {"name": "rzmx", "version": "test"}}

    async def handle_raw(self, body, resolver):
        message = json.loads(body)
        await asyncio.sleep(message["params"]["delay"])
        self.finished.append(message["id"])
        if message["method"].startswith("notifications/"):
            return None
        return {"jsonrpc": "2.0", "id": message["id"], "result": {}}


class RecordingResolver:
    def __init__(self):
        self.released = 0

    async def release(self):
        self.released += 1


def parse_event(event):
    return event.event, event.data


@pytest.mark.asyncio
async def test_stream_opens_with_initialized_and_endpoint_events():
    manager = ConnectionManager(SlowDispatcher())
    connection = await manager.open(RecordingResolver())
    events = manager.events(connection)

    event, data = parse_event(await events.__anext__())
    assert event == "message"
    assert json.loads(data)["method"] == "notifications/initialized"

    event, data = parse_event(await events.__anext__())
    assert event == "endpoint"
    assert data == f"/messages?sessionId={connection.token}"

    await events.aclose()


@pytest.mark.asyncio
async def test_responses_follow_request_arrival_order():
    dispatcher = SlowDispatcher()
    manager = ConnectionManager(dispatcher)
    connection = await manager.open(RecordingResolver())
    events = manager.events(connection)
    await events.__anext__()
    await events.__anext__()

    assert await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0.05}, request_id=1))
    assert await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0.0}, request_id=2))
    assert await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0.02}, request_id=3))

    ids = []
    for _ in range(3):
        _, data = parse_event(await events.__anext__())
        ids.append(json.loads(data)["id"])

    assert ids == [1, 2, 3]
    # dispatch itself ran concurrently
    assert dispatcher.finished[0] == 2

    await events.aclose()


@pytest.mark.asyncio
async def test_notifications_produce_no_event():
    manager = ConnectionManager(SlowDispatcher())
    connection = await manager.open(RecordingResolver())
    events = manager.events(connection)
    await events.__anext__()
    await events.__anext__()

    await manager.post_message(connection.token, rpc_body("notifications/cancelled", {"delay": 0}, request_id=1))
    await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0}, request_id=2))

    _, data = parse_event(await events.__anext__())
    assert json.loads(data)["id"] == 2

    await events.aclose()


@pytest.mark.asyncio
async def test_unknown_stream_rejects_messages():
    manager = ConnectionManager(SlowDispatcher())

    assert await manager.post_message("nope", rpc_body("tools/list", {"delay": 0})) is False
    assert await manager.post_message(None, rpc_body("tools/list", {"delay": 0})) is False


@pytest.mark.asyncio
async def test_closing_stream_releases_session_and_discards_inflight():
    dispatcher = SlowDispatcher()
    manager = ConnectionManager(dispatcher)
    resolver = RecordingResolver()
    connection = await manager.open(resolver)
    events = manager.events(connection)
    await events.__anext__()
    await events.__anext__()

    await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0.02}, request_id=1))
    await events.aclose()

    assert resolver.released == 1
    assert await manager.count() == 0
    assert await manager.post_message(connection.token, rpc_body("tools/list", {"delay": 0})) is False

    # the in-flight call still runs to completion
    await asyncio.sleep(0.05)
    assert dispatcher.finished == [1]


@pytest.mark.asyncio
async def test_close_all():
    manager = ConnectionManager(SlowDispatcher())
    resolvers = [RecordingResolver(), RecordingResolver()]
    for resolver in resolvers:
        await manager.open(resolver)

    await manager.close_all()

    assert await manager.count() == 0
    assert [r.released for r in resolvers] == [1, 1]


@pytest.mark.asyncio
async def test_stream_response_pings_on_keepalive_interval():
    manager = ConnectionManager(SlowDispatcher())
    connection = await manager.open(RecordingResolver())

    response = _stream(FakeService(manager), connection)

    assert isinstance(response, EventSourceResponse)
    assert response.ping_interval == KEEPALIVE_INTERVAL == 15
    assert response.media_type == "text/event-stream"

    await manager.close(connection.token)


class FakeService:
    def __init__(self, connections):
        self.connections = connections


@pytest.mark.asyncio
async def test_stream_tokens_are_shortened_in_logs(caplog):
    manager = ConnectionManager(SlowDispatcher())

    with caplog.at_level(logging.INFO):
        connection = await manager.open(RecordingResolver())
        await manager.close(connection.token)

    assert connection.token not in caplog.text
    assert short_token(connection.token) in caplog.text


def test_short_token():
    assert short_token("0123456789abcdef") == "01234567..."
    assert short_token("") == "<none>"
    assert short_token(None) == "<none>"
