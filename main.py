"""RZMX MCP Server.

Exposes the Rezoomex requirements API to MCP clients (IDE plugins, tool
runners). It handles:
- MCP over SSE streams (/sse, /mcp, /v1/sse) and plain POST (/mcp, /sse, /v1/sse)
- OAuth authorization-code flow fronting Rezoomex login (via oauth/)
- Direct session endpoints for X-Session-ID clients (/auth/*)
- Direct tool execution outside JSON-RPC (/mcp/execute/{tool_name})

Run with `rzmx-mcp-server` or `uvicorn main:create_app --factory`.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware

from config import load_config
from service import VERSION, McpService, build_service

logger = logging.getLogger(__name__)

# Headers MCP clients send and read across origins
MCP_HEADERS = ["Content-Type", "Authorization", "X-Session-ID", "Mcp-Session-Id"]


def create_app(service: McpService = None) -> FastAPI:
    """Build the FastAPI app around a service (built from the environment if omitted)."""
    if service is None:
        service = build_service(load_config())
    config = service.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.startup()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(
        title="RZMX MCP Server",
        description="MCP server for the Rezoomex requirements API with OAuth 2.0 login",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.service = service

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=MCP_HEADERS,
        expose_headers=["X-Session-ID", "Mcp-Session-Id"],
    )

    # ============== Include Routers ==============

    import execute
    import session_endpoints
    import sse
    import transports

    app.include_router(sse.router)
    app.include_router(transports.router)
    app.include_router(session_endpoints.router)
    app.include_router(execute.router)

    # OAuth endpoints and bearer-protected transports (optional)
    if config.enable_oauth:
        from oauth.endpoints import router as oauth_router
        from oauth.middleware import BearerAuthMiddleware

        app.include_router(oauth_router)
        app.include_router(sse.bearer_router)

        v1_app = FastAPI(middleware=[Middleware(BearerAuthMiddleware, service=service)])
        v1_app.state.service = service
        v1_app.include_router(sse.v1_router)
        v1_app.include_router(transports.v1_router)
        app.mount("/v1", v1_app)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "rzmx-mcp-server",
            "version": VERSION,
            "sessions": await service.registry.count(),
            "streams": await service.connections.count(),
        }

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        base_uri = config.base_uri
        response = {
            "name": "RZMX MCP Server",
            "version": VERSION,
            "upstream": config.upstream_base_url,
            "endpoints": {
                "sse": "/sse",
                "messages": "/messages?sessionId=...",
                "mcp": "/mcp",
                "tools": "/mcp/tools",
                "execute": "/mcp/execute/{tool_name}",
            },
            "tools": len(service.catalog.listed_tools()),
            "oauth_enabled": config.enable_oauth,
        }
        if config.enable_oauth:
            response["endpoints"]["v1_sse"] = "/v1/sse"
            response["oauth"] = {
                "protected_resource": f"{base_uri}/.well-known/oauth-protected-resource",
                "authorization_server": f"{base_uri}/.well-known/oauth-authorization-server",
            }
        return response

    logger.info(f"[STARTUP] Base URI: {config.base_uri}")
    logger.info(f"[STARTUP] OAuth enabled: {config.enable_oauth}")
    return app


# ============== Main Entry Point ==============

def run() -> None:
    import uvicorn
    from logging_config import setup_logging

    config = load_config()
    setup_logging(config.log_level, config.log_file)
    app = create_app(build_service(config))
    logger.info(f"Starting RZMX MCP server on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
