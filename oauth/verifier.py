"""Credential verification against the Rezoomex identity endpoints.

Exchanges an email/password pair for a bearer credential and checks
bearer credentials against the profile endpoint. Holds no local state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from errors import (
    InvalidCredentials,
    InvalidToken,
    MalformedUpstreamResponse,
    UpstreamUnavailable,
)
from upstream import is_header_safe

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/users/auth0/token"
PROFILE_PATH = "/v1/users/me"

# Statuses meaning "the identity endpoint rejected this pair"
_REJECTED_STATUSES = {400, 401, 403}


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None


class CredentialVerifier:
    """Talks to the upstream identity and profile endpoints."""

    def __init__(self, base_url: str, timeout: float = 10.0, http_client: httpx.AsyncClient = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def verify_credentials(self, email: str, password: str) -> str:
        """Exchange email/password for a bearer credential.

        Raises:
            InvalidCredentials: the pair was rejected.
            UpstreamUnavailable: network failure, timeout or 5xx.
            MalformedUpstreamResponse: success without a usable token field.
        """
        try:
            response = await self._client.post(
                f"{self.base_url}{TOKEN_PATH}",
                data={"username": email, "password": password},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("[AUTH] Identity endpoint timed out")
            raise UpstreamUnavailable("Identity service timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"[AUTH] Identity endpoint unreachable: {e.__class__.__name__}")
            raise UpstreamUnavailable("Identity service unavailable") from e

        if response.status_code in _REJECTED_STATUSES:
            logger.info(f"[AUTH] Credentials rejected (HTTP {response.status_code})")
            raise InvalidCredentials("Invalid email or password")
        if response.status_code >= 500:
            logger.warning(f"[AUTH] Identity endpoint error (HTTP {response.status_code})")
            raise UpstreamUnavailable(f"Identity service error (HTTP {response.status_code})")
        if response.status_code != 200:
            raise InvalidCredentials(f"Authentication failed (HTTP {response.status_code})")

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedUpstreamResponse("Identity service returned invalid JSON") from e

        token = None
        if isinstance(body, dict):
            token = body.get("access_token") or body.get("token")
        if not token or not isinstance(token, str):
            raise MalformedUpstreamResponse("No access token in identity response")

        logger.info("[AUTH] Credentials verified")
        return token

    async def _profile(self, token: str) -> httpx.Response:
        return await self._client.get(
            f"{self.base_url}{PROFILE_PATH}",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            timeout=self.timeout,
        )

    async def verify_token(self, token: str) -> bool:
        """Liveness check. Never raises."""
        if not token or not is_header_safe(token):
            return False
        try:
            response = await self._profile(token)
        except httpx.HTTPError as e:
            logger.info(f"[AUTH] Token check failed: {e.__class__.__name__}")
            return False
        return response.status_code == 200

    async def resolve_identity(self, token: str) -> Identity:
        """Look up the user behind a bearer credential.

        Raises:
            InvalidToken: the profile endpoint rejected the token.
            UpstreamUnavailable: network failure or timeout.
        """
        if not token:
            raise InvalidToken("Missing bearer token")
        if not is_header_safe(token):
            raise InvalidToken("Malformed bearer token")
        try:
            response = await self._profile(token)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable("Identity service timed out") from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable("Identity service unavailable") from e

        if response.status_code != 200:
            raise InvalidToken(f"Token rejected (HTTP {response.status_code})")

        try:
            profile = response.json()
        except ValueError as e:
            raise InvalidToken("Profile response was not JSON") from e

        user_id = None
        if isinstance(profile, dict):
            user_id = profile.get("id") or profile.get("userId")
        if not user_id:
            raise InvalidToken("Profile response has no user id")

        return Identity(user_id=str(user_id), email=profile.get("email"))
