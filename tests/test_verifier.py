import httpx
import pytest

from conftest import UPSTREAM_URL, VALID_EMAIL, VALID_PASSWORD, VALID_TOKEN
from errors import InvalidCredentials, InvalidToken, MalformedUpstreamResponse, UpstreamUnavailable
from oauth.verifier import CredentialVerifier


def verifier_with(handler) -> CredentialVerifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CredentialVerifier(UPSTREAM_URL, timeout=1.0, http_client=client)


def respond(status_code, json=None, text=None):
    def handler(request):
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=json)
    return handler


@pytest.mark.asyncio
async def test_verify_credentials_posts_form_and_returns_token(rezoomex_client):
    verifier = CredentialVerifier(UPSTREAM_URL, http_client=rezoomex_client)

    assert await verifier.verify_credentials(VALID_EMAIL, VALID_PASSWORD) == VALID_TOKEN


@pytest.mark.asyncio
async def test_verify_credentials_accepts_alternate_token_field():
    verifier = verifier_with(respond(200, json={"token": "tok-alt"}))

    assert await verifier.verify_credentials("a@b.c", "pw") == "tok-alt"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 401, 403])
async def test_rejected_pair_is_invalid_credentials(status_code):
    verifier = verifier_with(respond(status_code, json={"detail": "no"}))

    with pytest.raises(InvalidCredentials):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_server_error_is_upstream_unavailable():
    verifier = verifier_with(respond(502, text="bad gateway"))

    with pytest.raises(UpstreamUnavailable):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_timeout_is_upstream_unavailable_not_invalid_credentials():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    verifier = verifier_with(handler)

    with pytest.raises(UpstreamUnavailable):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_network_error_is_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    verifier = verifier_with(handler)

    with pytest.raises(UpstreamUnavailable):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_success_without_token_is_malformed():
    verifier = verifier_with(respond(200, json={"token_type": "bearer"}))

    with pytest.raises(MalformedUpstreamResponse):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_success_with_non_json_body_is_malformed():
    verifier = verifier_with(respond(200, text="<html>ok</html>"))

    with pytest.raises(MalformedUpstreamResponse):
        await verifier.verify_credentials("a@b.c", "pw")


@pytest.mark.asyncio
async def test_verify_token(rezoomex_client):
    verifier = CredentialVerifier(UPSTREAM_URL, http_client=rezoomex_client)

    assert await verifier.verify_token(VALID_TOKEN) is True
    assert await verifier.verify_token("tok-other") is False
    assert await verifier.verify_token("") is False


@pytest.mark.asyncio
async def test_verify_token_never_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert await verifier_with(handler).verify_token("tok") is False


@pytest.mark.asyncio
async def test_resolve_identity(rezoomex_client):
    verifier = CredentialVerifier(UPSTREAM_URL, http_client=rezoomex_client)

    identity = await verifier.resolve_identity(VALID_TOKEN)

    assert identity.user_id == "u-42"
    assert identity.email == VALID_EMAIL


@pytest.mark.asyncio
async def test_resolve_identity_reads_user_id_field():
    verifier = verifier_with(respond(200, json={"userId": 7, "email": "x@y.z"}))

    assert (await verifier.resolve_identity("tok")).user_id == "7"


@pytest.mark.asyncio
async def test_resolve_identity_rejected_token(rezoomex_client):
    verifier = CredentialVerifier(UPSTREAM_URL, http_client=rezoomex_client)

    with pytest.raises(InvalidToken):
        await verifier.resolve_identity("tok-other")


@pytest.mark.asyncio
async def test_resolve_identity_without_user_id():
    verifier = verifier_with(respond(200, json={"email": "x@y.z"}))

    with pytest.raises(InvalidToken):
        await verifier.resolve_identity("tok")


def never_called(request):
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["tök-valid", "tok\r\nX-Injected: 1", "tok-☃"])
async def test_unsendable_token_is_not_valid(token):
    verifier = verifier_with(never_called)

    assert await verifier.verify_token(token) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["tök-valid", "tok\r\nX-Injected: 1"])
async def test_unsendable_token_has_no_identity(token):
    verifier = verifier_with(never_called)

    with pytest.raises(InvalidToken, match="Malformed bearer token"):
        await verifier.resolve_identity(token)
