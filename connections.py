"""Open event streams and their ordered outboxes.

Requests posted for a stream are dispatched concurrently; each stream's
outbox holds the dispatch tasks in arrival order, so responses are
written in the order the requests arrived. A closed stream stops
emitting; its in-flight tasks finish and are discarded.

Framing and keepalive pings belong to EventSourceResponse (see sse.py);
this module only produces the ServerSentEvent objects.
"""

import asyncio
import json
import logging
import uuid
from typing import AsyncIterator, Optional

from sse_starlette.sse import ServerSentEvent

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15
MESSAGES_PATH = "/messages"


def short_token(token: Optional[str]) -> str:
    """Loggable prefix of a stream token."""
    if not token:
        return "<none>"
    return f"{token[:8]}..."


class StreamConnection:
    """One open event stream and its ordered outbox."""

    def __init__(self, token: str, resolver):
        self.token = token
        self.resolver = resolver
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    @property
    def endpoint(self) -> str:
        return f"{MESSAGES_PATH}?sessionId={self.token}"


class ConnectionManager:
    """Tracks open streams by token."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self._connections: dict[str, StreamConnection] = {}
        self._lock = asyncio.Lock()
        self._inflight: set = set()

    async def open(self, resolver) -> StreamConnection:
        connection = StreamConnection(str(uuid.uuid4()), resolver)
        async with self._lock:
            self._connections[connection.token] = connection
        logger.info(f"[SSE] Stream opened: {short_token(connection.token)}")
        return connection

    async def get(self, token: Optional[str]) -> Optional[StreamConnection]:
        if not token:
            return None
        async with self._lock:
            return self._connections.get(token)

    async def close(self, token: str) -> None:
        async with self._lock:
            connection = self._connections.pop(token, None)
        if connection is None or connection.closed:
            return
        connection.closed = True
        connection.outbox.put_nowait(None)
        await connection.resolver.release()
        logger.info(f"[SSE] Stream closed: {short_token(token)}")

    async def close_all(self) -> None:
        async with self._lock:
            tokens = list(self._connections)
        for token in tokens:
            await self.close(token)

    async def count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def post_message(self, token: Optional[str], body: bytes) -> bool:
        """Queue a request for an open stream. False if the stream is unknown."""
        connection = await self.get(token)
        if connection is None or connection.closed:
            return False
        task = asyncio.ensure_future(self.dispatcher.handle_raw(body, connection.resolver))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        connection.outbox.put_nowait(task)
        return True

    async def events(self, connection: StreamConnection) -> AsyncIterator[ServerSentEvent]:
        """Yield the stream: initialized notification, endpoint, then responses."""
        try:
            yield ServerSentEvent(
                data=json.dumps({
                    "jsonrpc": "2.0",
                    "method": "notifications/initialized",
                    "params": self.dispatcher.server_metadata(),
                }),
                event="message",
            )
            yield ServerSentEvent(data=connection.endpoint, event="endpoint")

            while not connection.closed:
                task = await connection.outbox.get()
                if task is None:
                    break
                # shielded: a disconnect must not cancel the call itself
                response = await asyncio.shield(task)
                if connection.closed:
                    break
                if response is not None:
                    yield ServerSentEvent(data=json.dumps(response), event="message")
        finally:
            await self.close(connection.token)
