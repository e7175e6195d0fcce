"""Direct session endpoints.

For clients that manage an X-Session-ID themselves instead of going
through the OAuth flow:
- /auth/login, /auth/token: open a session from credentials or a bearer token
- /auth/callback, /auth/pickup-token: browser login that parks the token
  until the page collects it as a session
- /auth/status, /auth/session/{id}: inspect a session
- DELETE /auth/session: log out
- /auth/sessions/validate: re-check every live session upstream
- /auth/login-url, /mcp/tools: informational
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, RedirectResponse

from errors import ServiceError
from oauth.broker import with_query
from oauth.stores import PickupToken
from service import VERSION, McpService, get_service

logger = logging.getLogger(__name__)

# Router for session endpoints
router = APIRouter(tags=["sessions"])


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def _session_user(service: McpService, session_id: str):
    handle = await service.registry.get(session_id)
    return getattr(handle, "user_info", None)


@router.post("/auth/login")
async def login(request: Request, service: McpService = Depends(get_service)):
    """Create a session from an email/password pair."""
    data = await _json_body(request)
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        return JSONResponse({"error": "Email and password are required"}, status_code=400)

    try:
        credential = await service.verifier.verify_credentials(email, password)
        session_id = await service.registry.create(credential)
    except ServiceError as e:
        logger.info(f"[AUTH] Credential login failed: {e.__class__.__name__}")
        return JSONResponse({"error": f"Authentication failed: {e.message}"}, status_code=401)

    logger.info(f"[AUTH] Session opened via credentials: {session_id[:12]}...")
    return {
        "message": "Authentication successful",
        "sessionId": session_id,
        "user": await _session_user(service, session_id),
    }


@router.post("/auth/token")
async def login_with_token(request: Request, service: McpService = Depends(get_service)):
    """Create a session from an existing bearer token."""
    data = await _json_body(request)
    bearer_token = data.get("bearerToken")
    if not bearer_token:
        return JSONResponse({"error": "Bearer token is required"}, status_code=400)

    try:
        session_id = await service.registry.create(bearer_token)
    except ServiceError as e:
        logger.info(f"[AUTH] Token login failed: {e.message}")
        return JSONResponse({
            "error": f"Authentication failed: {e.message}",
            "loginUrl": service.config.login_url,
        "callbackUrl": f"{service.config.base_uri}/auth/callback",
        }, status_code=401)

    logger.info(f"[AUTH] Session opened via bearer token: {session_id[:12]}...")
    return {
        "message": "Authentication successful",
        "sessionId": session_id,
        "user": await _session_user(service, session_id),
    }


@router.get("/auth/callback")
async def login_callback(
    access_token: str = "",
    error: str = "",
    service: McpService = Depends(get_service),
):
    """Park the token the login page redirected with; the browser collects it by id."""
    if error:
        logger.info(f"[AUTH] Login callback reported an error: {error}")
        return RedirectResponse(with_query("/", {"error": error}), status_code=302)
    if not access_token:
        return RedirectResponse("/?error=no_token", status_code=302)

    token_id = f"temp_{secrets.token_urlsafe(16)}"
    await service.pickup_tokens.put(token_id, PickupToken(
        token_id=token_id,
        bearer_credential=access_token,
        created_at=service.pickup_tokens.clock(),
    ))
    logger.info(f"[AUTH] Parked login token {token_id[:12]}... for pickup")
    return RedirectResponse(with_query("/", {"token_id": token_id, "success": "1"}), status_code=302)


@router.post("/auth/pickup-token")
async def pickup_token(request: Request, service: McpService = Depends(get_service)):
    """Turn a parked login token into a session. The token can be collected once."""
    data = await _json_body(request)
    token_id = data.get("tempTokenId")
    if not token_id:
        return JSONResponse({"error": "Temporary token ID is required"}, status_code=400)

    parked = await service.pickup_tokens.peek(token_id)
    if parked is None:
        return JSONResponse({"error": "Token not found or expired"}, status_code=404)

    try:
        session_id = await service.registry.create(parked.bearer_credential)
    except ServiceError as e:
        logger.info(f"[AUTH] Token pickup failed: {e.message}")
        return JSONResponse({"error": f"Token pickup failed: {e.message}"}, status_code=401)

    await service.pickup_tokens.pop(token_id)
    logger.info(f"[AUTH] Session opened via token pickup: {session_id[:12]}...")
    return {
        "success": True,
        "sessionId": session_id,
        "user": await _session_user(service, session_id),
    }


@router.get("/auth/status")
async def auth_status(
    x_session_id: str = Header(None),
    service: McpService = Depends(get_service),
):
    session = await service.registry.get_session(x_session_id)
    if session is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "sessionId": session.session_id,
        "user": getattr(session.handle, "user_info", None),
    }


@router.get("/auth/session/{session_id}")
async def session_info(session_id: str, service: McpService = Depends(get_service)):
    if await service.registry.get(session_id) is None:
        return JSONResponse({"valid": False, "message": "Session not found"}, status_code=404)
    return {"valid": True, "sessionId": session_id, "authenticated": True}


@router.delete("/auth/session")
async def clear_session(
    x_session_id: str = Header(None),
    service: McpService = Depends(get_service),
):
    """Log out. Clearing an unknown session is not an error."""
    if x_session_id:
        await service.registry.revoke(x_session_id)
    return {"message": "Session cleared successfully"}


@router.post("/auth/sessions/validate")
async def validate_sessions(service: McpService = Depends(get_service)):
    """Administrative health check: re-validate every live session upstream."""
    results = await service.registry.revalidate_all()
    return {
        "checked": len(results),
        "revoked": sum(1 for r in results if not r.still_valid),
        "results": [{"sessionId": r.session_id, "stillValid": r.still_valid} for r in results],
    }


@router.get("/auth/login-url")
async def login_url(service: McpService = Depends(get_service)):
    return {
        "loginUrl": service.config.login_url,
        "instructions": "Please login at the provided URL and extract the bearer token "
                        "from the URL after successful authentication.",
        "tokenLocation": "The bearer token will be in the URL as access_token parameter after login.",
    }


@router.get("/mcp/tools")
async def list_tools(service: McpService = Depends(get_service)):
    tools = [tool.model_dump(by_alias=True, exclude_none=True) for tool in service.catalog.list()]
    return {"tools": tools, "count": len(tools), "version": VERSION}
