"""Bearer guard for OAuth-protected MCP endpoints.

Checks the Authorization header against the Rezoomex profile endpoint and
stores the verified identity on request.state for the transport handlers.
- GET without a bearer token is sent to /authorize (direct login form)
- POST without a bearer token gets a JSON-RPC 401
- Invalid tokens get 401 with WWW-Authenticate (RFC 9728)
"""

import logging
from typing import Union

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from errors import InvalidToken, UpstreamUnavailable
from oauth.broker import DIRECT_LOGIN_STATE, with_query
from oauth.verifier import Identity

logger = logging.getLogger(__name__)

AUTH_REQUIRED_CODE = -32001
DEFAULT_CLIENT_ID = "rzmx-client"


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return ""
    return auth_header[7:].strip()


def unauthorized_response(base_uri: str, error_description: str) -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        {"error": "unauthorized", "error_description": error_description},
        status_code=401,
        headers={
            "WWW-Authenticate": f'Bearer resource_metadata="{base_uri}/.well-known/oauth-protected-resource"'
        }
    )


def authorization_redirect(base_uri: str) -> RedirectResponse:
    url = with_query(f"{base_uri}/authorize", {
        "response_type": "code",
        "client_id": DEFAULT_CLIENT_ID,
        "redirect_uri": f"{base_uri}/callback",
        "state": DIRECT_LOGIN_STATE,
    })
    return RedirectResponse(url=url, status_code=302)


async def check_bearer(request: Request, service) -> Union[Identity, Response]:
    """Verify the request's bearer token.

    Returns the caller's Identity, or the response to send instead.
    """
    base_uri = service.config.base_uri
    token = bearer_token(request)

    if not token:
        if request.method == "GET":
            logger.info("[AUTH] Unauthenticated stream request, redirecting to /authorize")
            return authorization_redirect(base_uri)
        logger.info("[AUTH] Request rejected: no Bearer token")
        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": AUTH_REQUIRED_CODE, "message": "Authentication required"},
            },
            status_code=401,
            headers={
                "WWW-Authenticate": f'Bearer resource_metadata="{base_uri}/.well-known/oauth-protected-resource"'
            },
        )

    try:
        identity = await service.verifier.resolve_identity(token)
    except InvalidToken as e:
        logger.info(f"[AUTH] Request rejected: {e.message}")
        return unauthorized_response(base_uri, "Invalid or expired token")
    except UpstreamUnavailable as e:
        logger.warning(f"[AUTH] Token check unavailable: {e.message}")
        return JSONResponse(
            {"error": "temporarily_unavailable", "error_description": e.message},
            status_code=503,
        )

    request.state.bearer_token = token
    request.state.identity = identity
    logger.info(f"[AUTH] Request authorized: {identity.email or identity.user_id}")
    return identity


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate Bearer tokens for the mounted /v1 app."""

    def __init__(self, app, service):
        super().__init__(app)
        self.service = service

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        outcome = await check_bearer(request, self.service)
        if isinstance(outcome, Response):
            return outcome
        return await call_next(request)
