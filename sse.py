"""Streamed (SSE) MCP transport.

Each GET opens a long-lived event stream (see connections.py) identified by a
per-connection token. Requests for that stream arrive on POST
/messages?sessionId=TOKEN and their responses come back on the stream.

- /sse: session from the X-Session-ID header (or inline authenticate)
- /mcp, /v1/sse: bearer token (see oauth/middleware.py)
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from connections import KEEPALIVE_INTERVAL, MESSAGES_PATH, StreamConnection, short_token
from oauth.middleware import check_bearer
from service import McpService, get_service
from sessions import BearerSessionResolver, HeaderSessionResolver

logger = logging.getLogger(__name__)

STREAM_HEADERS = {"Cache-Control": "no-cache"}

# Router for streamed endpoints on the main app
router = APIRouter(tags=["sse"])

# Router for bearer-authenticated streams on the main app (OAuth only)
bearer_router = APIRouter(tags=["sse"])

# Router for the bearer-guarded /v1 app
v1_router = APIRouter(tags=["sse"])


def _stream(service: McpService, connection: StreamConnection) -> EventSourceResponse:
    return EventSourceResponse(
        service.connections.events(connection),
        ping=KEEPALIVE_INTERVAL,
        headers=STREAM_HEADERS,
    )


@router.get("/sse")
async def sse_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """Stream keyed by an explicit session id (X-Session-ID, optional)."""
    resolver = HeaderSessionResolver(service.registry, request.headers.get("X-Session-ID"))
    connection = await service.connections.open(resolver)
    return _stream(service, connection)


async def _bearer_stream(request: Request, service: McpService) -> Response:
    resolver = BearerSessionResolver(
        service.registry,
        request.state.bearer_token,
        request.state.identity.user_id,
        request.state.identity.email,
    )
    connection = await service.connections.open(resolver)
    logger.info(f"[SSE] Bearer stream for user: {request.state.identity.email or request.state.identity.user_id}")
    return _stream(service, connection)


@bearer_router.get("/mcp")
async def mcp_stream_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """Bearer-authenticated stream."""
    outcome = await check_bearer(request, service)
    if isinstance(outcome, Response):
        return outcome
    return await _bearer_stream(request, service)


@v1_router.get("/sse")
async def v1_sse_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """Bearer-authenticated stream; the /v1 middleware has verified the token."""
    return await _bearer_stream(request, service)


@router.post(MESSAGES_PATH)
async def messages_endpoint(request: Request, sessionId: str = "",
                            service: McpService = Depends(get_service)) -> Response:
    """Accept one JSON-RPC message for an open stream."""
    body = await request.body()
    if not await service.connections.post_message(sessionId, body):
        logger.info(f"[SSE] Message for unknown stream: {short_token(sessionId)}")
        return JSONResponse({"error": "Unknown or closed session"}, status_code=404)
    return Response("Accepted", status_code=202)
