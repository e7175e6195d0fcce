import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from config import Config
from errors import InvalidCredentials, InvalidToken
from oauth.verifier import Identity
from service import build_service

BASE_URI = "http://testserver"
UPSTREAM_URL = "https://rezoomex.test"

VALID_EMAIL = "pm@example.com"
VALID_PASSWORD = "correct-horse"
VALID_TOKEN = "tok-valid"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubHandle:
    """Upstream handle that records invocations and tags its results."""

    def __init__(self, tag: str, valid: bool = True):
        self.tag = tag
        self.valid = valid
        self.calls = []
        self.validations = 0
        self.user_info = {"id": tag, "email": f"{tag}@example.com"}
        self.fail_with = None
        self.trace = []

    async def validate(self) -> bool:
        self.validations += 1
        return self.valid

    async def invoke(self, operation, params):
        self.calls.append((operation, params))
        self.trace.append(("start", self.tag))
        # yield so concurrent callers interleave
        await asyncio.sleep(0)
        self.trace.append(("end", self.tag))
        if self.fail_with is not None:
            raise self.fail_with
        return {"tag": self.tag, "operation": operation, "params": params}


class StubUpstream:
    """Handle factory: known tokens map to prepared handles, others are invalid."""

    def __init__(self):
        self.handles = {}

    def add(self, token: str, valid: bool = True) -> StubHandle:
        handle = StubHandle(token, valid=valid)
        self.handles[token] = handle
        return handle

    def handle_for(self, token: str) -> StubHandle:
        return self.handles.get(token) or StubHandle(token, valid=False)

    async def aclose(self):
        pass


class StubVerifier:
    def __init__(self):
        self.credentials = {VALID_EMAIL: (VALID_PASSWORD, VALID_TOKEN)}
        self.valid_tokens = {VALID_TOKEN}

    async def verify_credentials(self, email, password):
        stored = self.credentials.get(email)
        if stored is None or stored[0] != password:
            raise InvalidCredentials("Invalid email or password")
        return stored[1]

    async def verify_token(self, token):
        return token in self.valid_tokens

    async def resolve_identity(self, token):
        if token not in self.valid_tokens:
            raise InvalidToken("Token rejected (HTTP 401)")
        return Identity(user_id=f"user-{token}", email=f"{token}@example.com")

    async def aclose(self):
        pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    stub = StubUpstream()
    stub.add(VALID_TOKEN)
    return stub


@pytest.fixture
def verifier():
    return StubVerifier()


# ============== Fake Rezoomex API ==============

def fake_rezoomex(request: httpx.Request) -> httpx.Response:
    """MockTransport handler standing in for the Rezoomex API."""
    path = request.url.path

    if path == "/v1/users/auth0/token" and request.method == "POST":
        form = parse_qs(request.content.decode())
        email = form.get("username", [""])[0]
        password = form.get("password", [""])[0]
        if email == VALID_EMAIL and password == VALID_PASSWORD:
            return httpx.Response(200, json={"access_token": VALID_TOKEN, "token_type": "bearer"})
        return httpx.Response(401, json={"detail": "Invalid credentials"})

    if request.headers.get("Authorization") != f"Bearer {VALID_TOKEN}":
        return httpx.Response(401, json={"detail": "Unauthorized"})

    if path == "/v1/users/me":
        return httpx.Response(200, json={"id": "u-42", "email": VALID_EMAIL, "ndaStatus": "SIGNED"})

    if path == "/v1/requirements/39SQ/39SQ-P-001/user_story":
        return httpx.Response(200, json={"data": [
            {"resourceId": "39SQ-P-001-002", "createdAt": "2024-02-01", "properties": {"goal": "Second"}},
            {"resourceId": "39SQ-P-001-001", "createdAt": "2024-01-01", "properties": {"goal": "First"}},
        ]})

    return httpx.Response(404, json={"detail": "Not found"})


@pytest.fixture
def rezoomex_client():
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_rezoomex))


@pytest.fixture
def app_config():
    return Config({
        "base_uri": BASE_URI,
        "upstream_base_url": UPSTREAM_URL,
        "login_url": "https://login.rezoomex.test/account/login",
    })


@pytest.fixture
def live_service(app_config, rezoomex_client):
    """Fully wired service whose outbound calls hit the fake Rezoomex API."""
    return build_service(app_config, http_client=rezoomex_client)


def rpc(method, params=None, request_id=1) -> dict:
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def rpc_body(method, params=None, request_id=1) -> bytes:
    return json.dumps(rpc(method, params, request_id)).encode()


def tool_text(response: dict):
    """Decode the JSON payload of a tools/call result."""
    return json.loads(response["result"]["content"][0]["text"])


