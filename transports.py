"""Discrete request/response MCP transport.

One POST carries one JSON-RPC request and gets one JSON-RPC response,
with HTTP 200 even for JSON-RPC errors and 202 for notifications.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from service import McpService, get_service
from sessions import BearerSessionResolver, HeaderSessionResolver

logger = logging.getLogger(__name__)

# Router for header-session endpoints on the main app
router = APIRouter(tags=["mcp"])

# Router for the bearer-guarded /v1 app
v1_router = APIRouter(tags=["mcp"])


async def _dispatch(request: Request, service: McpService, resolver) -> Response:
    body = await request.body()
    try:
        response = await service.dispatcher.handle_raw(body, resolver)
    finally:
        await resolver.release()
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)


@router.post("/mcp")
async def mcp_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """JSON-RPC over POST with the session in X-Session-ID."""
    resolver = HeaderSessionResolver(service.registry, request.headers.get("X-Session-ID"))
    return await _dispatch(request, service, resolver)


@router.post("/sse")
async def sse_post_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """Same as POST /mcp, for clients that post to the stream URL."""
    resolver = HeaderSessionResolver(service.registry, request.headers.get("X-Session-ID"))
    return await _dispatch(request, service, resolver)


@v1_router.post("/sse")
async def v1_post_endpoint(request: Request, service: McpService = Depends(get_service)) -> Response:
    """JSON-RPC over POST with a bearer token; one session per request."""
    identity = request.state.identity
    resolver = BearerSessionResolver(
        service.registry, request.state.bearer_token, identity.user_id, identity.email
    )
    return await _dispatch(request, service, resolver)
