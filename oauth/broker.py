"""Authorization-code broker.

A deliberately small OAuth2 authorization-code grant where this server is
the authorization server, fronting the Rezoomex credential check. The
upstream identity provider cannot register per-client redirect URIs, so
callers' redirect targets are remembered in CallbackSession records and
bridged through /callback.

Broker operations return step objects; oauth/endpoints.py renders them.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

from errors import (
    InvalidGrant,
    InvalidRequest,
    ServiceError,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from oauth.stores import CallbackSession, EphemeralStore, PendingAuthorization
from oauth.verifier import CredentialVerifier

logger = logging.getLogger(__name__)

# State value marking a request that should get the login form directly
DIRECT_LOGIN_STATE = "mcp-auth"
AUTHORIZATION_CODE_GRANT = "authorization_code"


# ============== Steps ==============

@dataclass
class LoginFormStep:
    state: str
    redirect_uri: str
    error: Optional[str] = None


@dataclass
class RedirectStep:
    url: str


@dataclass
class CodeIssuedStep:
    """Direct login finished with nowhere to redirect: show the code."""

    code: str


@dataclass
class CompletionStep:
    """Callback reached without anything left to bridge."""

    pass


def with_query(url: str, params: dict) -> str:
    """Append query parameters, skipping empty values."""
    params = {k: v for k, v in params.items() if v}
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def _callback_key(redirect_uri: str) -> Optional[str]:
    if not redirect_uri:
        return None
    values = parse_qs(urlparse(redirect_uri).query).get("session")
    return values[0] if values else None


def _short(code: str) -> str:
    return f"{code[:8]}..."


class AuthorizationBroker:
    """Issues and redeems single-use authorization codes."""

    def __init__(self, verifier: CredentialVerifier, base_uri: str,
                 codes: EphemeralStore, callbacks: EphemeralStore,
                 auth_mode: str = "form", login_url: str = ""):
        self.verifier = verifier
        self.base_uri = base_uri.rstrip("/")
        self.codes = codes
        self.callbacks = callbacks
        self.auth_mode = auth_mode
        self.login_url = login_url

    @property
    def callback_url(self) -> str:
        return f"{self.base_uri}/callback"

    async def begin_authorization(self, state: str, redirect_uri: str, client_id: str,
                                  response_type: str = "code"):
        if response_type != "code":
            raise UnsupportedResponseType(f"Unsupported response_type: {response_type}")

        if state == DIRECT_LOGIN_STATE:
            return LoginFormStep(state=state, redirect_uri=redirect_uri or self.callback_url)

        session_key = secrets.token_urlsafe(32)
        await self.callbacks.put(session_key, CallbackSession(
            session_key=session_key,
            original_state=state or "",
            redirect_uri=redirect_uri or "",
            client_id=client_id or "",
            created_at=self.callbacks.clock(),
        ))
        bridge = with_query(self.callback_url, {"session": session_key})

        if self.auth_mode == "delegate":
            logger.info("[AUTH] Delegating login to identity provider")
            return RedirectStep(with_query(self.login_url, {"redirect_uri": bridge}))

        logger.info("[AUTH] Stored callback session, redirecting to login form")
        return RedirectStep(with_query(
            f"{self.base_uri}/authorize",
            {"state": DIRECT_LOGIN_STATE, "redirect_uri": bridge},
        ))

    async def _mint_code(self, credential: str) -> str:
        code = secrets.token_urlsafe(32)
        await self.codes.put(code, PendingAuthorization(
            code=code,
            bearer_credential=credential,
            created_at=self.codes.clock(),
        ))
        logger.info(f"[AUTH] Issued authorization code {_short(code)}")
        return code

    async def submit_credentials(self, email: str, password: str, state: str, redirect_uri: str):
        """Verify a login form submission.

        Verifier failures re-render the form and never redirect.
        """
        try:
            credential = await self.verifier.verify_credentials(email, password)
        except ServiceError as e:
            logger.info(f"[AUTH] Login failed: {e.__class__.__name__}")
            return LoginFormStep(state=state, redirect_uri=redirect_uri, error=e.message)

        code = await self._mint_code(credential)

        if state == DIRECT_LOGIN_STATE:
            key = _callback_key(redirect_uri)
            callback = await self.callbacks.pop(key)
            if callback is not None:
                logger.info("[AUTH] Redirecting to original caller")
                return RedirectStep(with_query(
                    callback.redirect_uri,
                    {"code": code, "state": callback.original_state},
                ))
            return CodeIssuedStep(code=code)

        if not redirect_uri:
            return CodeIssuedStep(code=code)
        return RedirectStep(with_query(redirect_uri, {"code": code, "state": state}))

    async def complete_callback(self, session_key: str = None, code: str = None,
                                token: str = None):
        """Bridge GET /callback back to the caller that started the flow."""
        if token and not code:
            if not await self.verifier.verify_token(token):
                raise InvalidGrant("Identity provider returned an invalid token")
            code = await self._mint_code(token)

        callback = await self.callbacks.pop(session_key) if code else None
        if callback is not None:
            return RedirectStep(with_query(
                callback.redirect_uri,
                {"code": code, "state": callback.original_state},
            ))
        if token:
            return CodeIssuedStep(code=code)
        return CompletionStep()

    async def redeem_code(self, code: str, grant_type: str) -> str:
        """Exchange a code for its bearer credential, exactly once.

        Raises:
            UnsupportedGrantType: grant_type is not authorization_code.
            InvalidRequest: no code given.
            InvalidGrant: unknown, expired, redeemed, or no longer valid.
        """
        if grant_type != AUTHORIZATION_CODE_GRANT:
            raise UnsupportedGrantType("Only authorization_code grant type is supported")
        if not code:
            raise InvalidRequest("Missing required parameter: code")

        pending = await self.codes.pop(code)
        if pending is None:
            logger.info(f"[TOKEN] Code {_short(code)} unknown or expired")
            raise InvalidGrant("Authorization code is invalid or expired")

        if not await self.verifier.verify_token(pending.bearer_credential):
            logger.info(f"[TOKEN] Credential behind code {_short(code)} is no longer valid")
            raise InvalidGrant("Authorization code token is no longer valid")

        logger.info(f"[TOKEN] Code {_short(code)} redeemed")
        return pending.bearer_credential

    async def sweep_expired(self) -> int:
        return await self.codes.sweep_expired() + await self.callbacks.sweep_expired()
