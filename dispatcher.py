"""JSON-RPC dispatcher shared by every transport.

Parses an envelope, routes it through a closed method table and shapes
the response. Internal failures become JSON-RPC error objects here and
nowhere else; nothing raises past handle_raw()/handle().
"""

import json
import logging
from enum import Enum
from typing import Optional

from mcp.types import (
    INTERNAL_ERROR,
    CallToolResult,
    ErrorData,
    Implementation,
    InitializeResult,
    ResourcesCapability,
    ServerCapabilities,
    TextContent,
    ToolsCapability,
)

from errors import (
    AuthenticationRequired,
    MethodNotFound,
    ParseError,
    ServiceError,
    UnknownTool,
    UpstreamError,
)
from tools import AUTHENTICATE_TOOL, ToolCatalog, validate_arguments

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "rzmx"


class Method(str, Enum):
    INITIALIZE = "initialize"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"

    @classmethod
    def parse(cls, name) -> Optional["Method"]:
        try:
            return cls(name)
        except ValueError:
            return None


def error_response(request_id, code: int, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": ErrorData(code=code, message=message).model_dump(exclude_none=True),
    }


def result_response(request_id, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def text_result(text: str) -> dict:
    result = CallToolResult(content=[TextContent(type="text", text=text)])
    return result.model_dump(by_alias=True, exclude_none=True)


def is_notification(message: dict) -> bool:
    return "id" not in message and str(message.get("method", "")).startswith("notifications/")


class Dispatcher:
    """Routes initialize, tools/list and tools/call.

    Session resolution is delegated to a per-request resolver
    (sessions.HeaderSessionResolver or sessions.BearerSessionResolver).
    """

    def __init__(self, catalog: ToolCatalog, verifier, registry, server_version: str = "1.0.0"):
        self.catalog = catalog
        self.verifier = verifier
        self.registry = registry
        self.server_version = server_version
        self._handlers = {
            Method.INITIALIZE: self._initialize,
            Method.TOOLS_LIST: self._tools_list,
            Method.TOOLS_CALL: self._tools_call,
        }

    def server_metadata(self) -> dict:
        result = InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability(), resources=ResourcesCapability()),
            serverInfo=Implementation(name=SERVER_NAME, version=self.server_version),
        )
        return result.model_dump(by_alias=True, exclude_none=True)

    async def handle_raw(self, body, resolver) -> Optional[dict]:
        """Parse raw bytes and dispatch. Returns None for notifications."""
        try:
            message = json.loads(body)
        except (ValueError, TypeError):
            logger.info("[RPC] Rejected unparseable request body")
            return error_response(None, ParseError.jsonrpc_code, "Parse error")
        return await self.handle(message, resolver)

    async def handle(self, message, resolver) -> Optional[dict]:
        if not isinstance(message, dict) or "method" not in message:
            request_id = message.get("id") if isinstance(message, dict) else None
            return error_response(request_id, ParseError.jsonrpc_code, "Parse error: invalid request envelope")

        request_id = message.get("id")
        if is_notification(message):
            logger.debug(f"[RPC] Notification {message['method']}")
            return None

        try:
            method = Method.parse(message["method"])
            if method is None:
                raise MethodNotFound(f"Method not found: {message['method']}")
            params = message.get("params") or {}
            result = await self._handlers[method](params, resolver)
            return result_response(request_id, result)
        except ServiceError as e:
            logger.info(f"[RPC] {message['method']} failed: {e.__class__.__name__}: {e.message}")
            return error_response(request_id, e.jsonrpc_code, e.message)
        except Exception:
            logger.exception(f"[RPC] Unexpected error handling {message['method']}")
            return error_response(request_id, INTERNAL_ERROR, "Internal error")

    async def _initialize(self, params: dict, resolver) -> dict:
        return self.server_metadata()

    async def _tools_list(self, params: dict, resolver) -> dict:
        tools = self.catalog.listed_tools()
        return {"tools": [tool.model_dump(by_alias=True, exclude_none=True) for tool in tools]}

    async def _tools_call(self, params: dict, resolver) -> dict:
        name = params.get("name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}

        if name == AUTHENTICATE_TOOL.value:
            return await self._authenticate(arguments, resolver)

        handle = await resolver.resolve()

        tool = self.catalog.lookup(name)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {name}")
        validate_arguments(tool, arguments)

        logger.info(f"[RPC] tools/call {name}")
        try:
            result = await handle.invoke(name, arguments)
        except UpstreamError as e:
            if e.status_code == 401:
                logger.info("[SESSION] Upstream rejected the session credential, revoking")
                await resolver.invalidate()
            raise
        return text_result(json.dumps(result, indent=2))

    async def _authenticate(self, arguments: dict, resolver) -> dict:
        if not resolver.allows_inline_auth:
            raise AuthenticationRequired("Authentication is handled by the OAuth2 flow")

        tool = self.catalog.lookup(AUTHENTICATE_TOOL.value)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {AUTHENTICATE_TOOL.value}")
        validate_arguments(tool, arguments)
        credential = await self.verifier.verify_credentials(arguments["email"], arguments["password"])
        session_id = await self.registry.create(credential)
        resolver.bind(session_id)
        logger.info("[AUTH] Inline authentication succeeded")
        return text_result(
            f"Authentication successful! Session ID: {session_id}\n\n"
            "Use this session ID in the X-Session-ID header for subsequent requests."
        )
