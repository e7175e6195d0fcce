"""Direct tool execution for X-Session-ID clients, outside JSON-RPC.

- GET /mcp/execute/{tool_name}: arguments from the query string; streams
  progress events, then a result (or error) event, then complete
- POST /mcp/execute/{tool_name}: arguments are the JSON body; one JSON answer
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from mcp.types import Tool
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from connections import KEEPALIVE_INTERVAL
from errors import AuthenticationRequired, ServiceError, SessionExpired, UnknownTool, UpstreamError
from service import McpService, get_service
from tools import AUTHENTICATE_TOOL, validate_arguments

logger = logging.getLogger(__name__)

# Router for direct execution endpoints
router = APIRouter(tags=["execute"])

# HTTP status for each execution error on the POST route; anything else is 500
ERROR_STATUS = {
    "UNKNOWN_TOOL": 400,
    "AUTH_REQUIRED": 401,
    "SESSION_EXPIRED": 401,
}

_INTEGER = re.compile(r"-?\d+")
_NUMBER = re.compile(r"-?\d+(\.\d+)?")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def query_arguments(tool: Tool, query) -> dict:
    """Convert query-string values the tool's schema types as numbers.

    Values that don't parse are left as strings for validate_arguments to report.
    """
    properties = (tool.inputSchema or {}).get("properties") or {}
    arguments = {}
    for name, value in query.items():
        kind = (properties.get(name) or {}).get("type")
        if kind == "integer" and _INTEGER.fullmatch(value):
            value = int(value)
        elif kind == "number" and _NUMBER.fullmatch(value):
            value = float(value)
        arguments[name] = value
    return arguments


class ToolExecution:
    """One direct tool run: lookup, session check, then the upstream call."""

    def __init__(self, service: McpService, tool_name: str, session_id: Optional[str]):
        self.service = service
        self.tool_name = tool_name
        self.session_id = session_id

    def lookup(self) -> Tool:
        tool = self.service.catalog.lookup(self.tool_name)
        if tool is None or self.tool_name == AUTHENTICATE_TOOL.value:
            raise UnknownTool(f"Unknown tool: {self.tool_name}")
        return tool

    async def steps(self, arguments) -> AsyncIterator[tuple]:
        """Yield ("progress", message) steps and finally ("result", result).

        Raises:
            UnknownTool, AuthenticationRequired, SessionExpired, or any
            ServiceError from argument validation or the upstream call.
        """
        tool = self.lookup()

        yield "progress", "Authenticating..."
        handle = await self.service.registry.get(self.session_id)
        if handle is None:
            raise AuthenticationRequired(
                "Authentication required. Please authenticate first using /auth/token endpoint."
            )

        yield "progress", "Validating session..."
        if not await handle.validate():
            await self.service.registry.revoke(self.session_id)
            raise SessionExpired("Session expired. Please re-authenticate.")

        yield "progress", f"Executing {self.tool_name}..."
        validate_arguments(tool, arguments)
        try:
            result = await handle.invoke(self.tool_name, arguments)
        except UpstreamError as e:
            if e.status_code == 401:
                logger.info("[SESSION] Upstream rejected the session credential, revoking")
                await self.service.registry.revoke(self.session_id)
            raise
        yield "result", result

    async def run(self, arguments):
        """Run to completion, skipping progress steps."""
        result = None
        async for kind, payload in self.steps(arguments):
            if kind == "result":
                result = payload
        return result


def _event(event: str, payload: dict) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps({**payload, "timestamp": _timestamp()}), event=event)


async def _execution_events(execution: ToolExecution, query) -> AsyncIterator[ServerSentEvent]:
    try:
        arguments = query_arguments(execution.lookup(), query)
        async for kind, payload in execution.steps(arguments):
            if kind == "progress":
                yield _event("progress", {"message": payload, "progress": None})
            else:
                yield _event("result", {"result": payload})
        logger.info(f"[EXEC] {execution.tool_name} completed")
    except ServiceError as e:
        logger.info(f"[EXEC] {execution.tool_name} failed: {e.execution_error}: {e.message}")
        yield _event("error", {"error": e.execution_error, "message": e.message})
    except Exception as e:
        logger.exception(f"[EXEC] Unexpected error running {execution.tool_name}")
        yield _event("error", {"error": ServiceError.execution_error, "message": str(e)})
    yield _event("complete", {})


@router.get("/mcp/execute/{tool_name}")
async def execute_stream(
    tool_name: str,
    request: Request,
    x_session_id: str = Header(None),
    service: McpService = Depends(get_service),
):
    """Run a tool and stream its progress."""
    logger.info(f"[EXEC] Streamed run of {tool_name}")
    execution = ToolExecution(service, tool_name, x_session_id)
    return EventSourceResponse(
        _execution_events(execution, request.query_params),
        ping=KEEPALIVE_INTERVAL,
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/mcp/execute/{tool_name}")
async def execute(
    tool_name: str,
    request: Request,
    x_session_id: str = Header(None),
    service: McpService = Depends(get_service),
):
    """Run a tool and answer with its result."""
    try:
        arguments = await request.json()
    except ValueError:
        arguments = {}

    logger.info(f"[EXEC] Run of {tool_name}")
    execution = ToolExecution(service, tool_name, x_session_id)
    try:
        result = await execution.run(arguments)
    except ServiceError as e:
        logger.info(f"[EXEC] {tool_name} failed: {e.execution_error}: {e.message}")
        body = {"error": e.execution_error, "message": e.message}
        status_code = ERROR_STATUS.get(e.execution_error, 500)
        if status_code == 500:
            body["timestamp"] = _timestamp()
        return JSONResponse(body, status_code=status_code)

    return {"success": True, "result": result, "timestamp": _timestamp()}
