"""OAuth 2.0 endpoints for MCP client authentication.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/register)
- Authorization flow (/authorize, /authenticate, /callback)
- Token endpoint (/token)

The flow logic lives in oauth/broker.py; this module only turns broker
steps and errors into HTTP responses.
"""

import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from errors import ServiceError
from oauth.broker import CodeIssuedStep, CompletionStep, LoginFormStep, RedirectStep
from oauth.templates import render_completion, render_error, render_login, render_success
from service import McpService, get_service

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

STATIC_CLIENT_ID = "rezoomex-mcp-client"
TOKEN_LIFETIME_SECONDS = 3600
TOKEN_SCOPE = "read write"


def render_step(step, service: McpService) -> Response:
    if isinstance(step, RedirectStep):
        return RedirectResponse(url=step.url, status_code=302)
    if isinstance(step, LoginFormStep):
        return HTMLResponse(render_login(
            step.state, step.redirect_uri, service.config.upstream_base_url, error=step.error
        ))
    if isinstance(step, CodeIssuedStep):
        return HTMLResponse(render_success(step.code))
    if isinstance(step, CompletionStep):
        return HTMLResponse(render_completion())
    raise TypeError(f"Unknown authorization step: {step!r}")


def oauth_error_response(error: ServiceError) -> JSONResponse:
    status_code = 500 if error.oauth_error == "server_error" else 400
    return JSONResponse(
        {"error": error.oauth_error, "error_description": error.message},
        status_code=status_code,
    )


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(service: McpService = Depends(get_service)):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    base_uri = service.config.base_uri
    return {
        "resource": base_uri,
        "authorization_servers": [base_uri],
        "scopes_supported": ["read", "write"],
        "bearer_methods_supported": ["header"],
    }


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(service: McpService = Depends(get_service)):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    base_uri = service.config.base_uri
    return {
        "issuer": base_uri,
        "authorization_endpoint": f"{base_uri}/authorize",
        "token_endpoint": f"{base_uri}/token",
        "registration_endpoint": f"{base_uri}/register",
        "scopes_supported": ["read", "write"],
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
    }


# ============== Client Registration ==============

@router.post("/register")
async def register_client(request: Request, service: McpService = Depends(get_service)):
    """Static client registration.

    Rezoomex does not support dynamic clients, so every caller gets the same
    client id and this server's /callback as its redirect URI.
    """
    try:
        data = await request.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    client_name = data.get("client_name")
    redirect_uris = data.get("redirect_uris")
    if not client_name or not redirect_uris:
        logger.info("[AUTH] Client registration missing client_name or redirect_uris")
        return JSONResponse({
            "error": "invalid_client_metadata",
            "error_description": "Missing required parameters: redirect_uris and client_name",
        }, status_code=400)

    logger.info(f"[AUTH] Registered client: {client_name}")
    return JSONResponse({
        "client_id": STATIC_CLIENT_ID,
        "client_name": client_name,
        "redirect_uris": [service.broker.callback_url],
        "grant_types": ["authorization_code"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "none",
    })


# ============== Authorization Flow ==============

@router.get("/authorize")
async def authorize(
    response_type: str = "code",
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
    service: McpService = Depends(get_service),
):
    """OAuth 2.0 Authorization Endpoint - login form or redirect."""
    logger.info(f"[AUTH] Authorization request (client: {client_id or '<none>'})")
    try:
        step = await service.broker.begin_authorization(state, redirect_uri, client_id, response_type)
    except ServiceError as e:
        return oauth_error_response(e)
    return render_step(step, service)


@router.post("/authenticate")
async def authenticate(
    email: str = Form(""),
    password: str = Form(""),
    state: str = Form(""),
    redirect_uri: str = Form(""),
    service: McpService = Depends(get_service),
):
    """Handle login form submission."""
    step = await service.broker.submit_credentials(email, password, state, redirect_uri)
    return render_step(step, service)


@router.get("/callback")
async def callback(
    session: str = "",
    code: str = "",
    token: str = "",
    service: McpService = Depends(get_service),
):
    """Bridge a session-keyed redirect back to the original caller."""
    logger.info(f"[AUTH] Callback received (code: {bool(code)}, token: {bool(token)})")
    try:
        step = await service.broker.complete_callback(session or None, code or None, token or None)
    except ServiceError as e:
        logger.info(f"[AUTH] Callback failed: {e.message}")
        return HTMLResponse(render_error(e.message), status_code=400)
    return render_step(step, service)


# ============== Token Endpoint ==============

async def _token_params(request: Request) -> dict:
    """Token requests may be form-encoded or JSON."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return dict(form)


@router.post("/token")
async def token(request: Request, service: McpService = Depends(get_service)):
    """OAuth 2.0 Token Endpoint."""
    params = await _token_params(request)
    grant_type = params.get("grant_type")
    code = params.get("code")
    logger.info(f"[TOKEN] grant_type: {grant_type}, client_id: {params.get('client_id')}")

    try:
        credential = await service.broker.redeem_code(code, grant_type)
    except ServiceError as e:
        return oauth_error_response(e)

    return JSONResponse({
        "access_token": credential,
        "token_type": "Bearer",
        "expires_in": TOKEN_LIFETIME_SECONDS,
        "scope": TOKEN_SCOPE,
    })
