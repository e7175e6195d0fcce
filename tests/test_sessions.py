import uuid

import pytest

from conftest import VALID_TOKEN
from errors import AuthenticationFailed, AuthenticationRequired
from sessions import BearerSessionResolver, HeaderSessionResolver, SessionRegistry


@pytest.fixture
def registry(upstream, clock):
    return SessionRegistry(upstream.handle_for, ttl=100, clock=clock)


@pytest.mark.asyncio
async def test_get_unknown_session_is_absent(registry):
    assert await registry.get("never-registered") is None
    assert await registry.get("") is None
    assert await registry.get(None) is None


@pytest.mark.asyncio
async def test_create_returns_uuid4_and_resolves(registry, upstream):
    session_id = await registry.create(VALID_TOKEN)

    assert uuid.UUID(session_id).version == 4
    assert await registry.get(session_id) is upstream.handles[VALID_TOKEN]


@pytest.mark.asyncio
async def test_create_with_invalid_credential_stores_nothing(registry):
    with pytest.raises(AuthenticationFailed):
        await registry.create("tok-rejected")

    assert await registry.count() == 0


@pytest.mark.asyncio
async def test_session_ids_are_unique(registry):
    ids = {await registry.create(VALID_TOKEN) for _ in range(20)}
    assert len(ids) == 20


@pytest.mark.asyncio
async def test_revoke_is_idempotent(registry):
    session_id = await registry.create(VALID_TOKEN)

    assert await registry.revoke(session_id) is True
    assert await registry.revoke(session_id) is False
    assert await registry.get(session_id) is None
    assert await registry.count() == 0


@pytest.mark.asyncio
async def test_expired_session_is_removed_on_get(registry, clock):
    session_id = await registry.create(VALID_TOKEN)

    clock.advance(101)

    assert await registry.get(session_id) is None
    assert await registry.count() == 0


@pytest.mark.asyncio
async def test_get_refreshes_expiry(registry, clock):
    session_id = await registry.create(VALID_TOKEN)

    clock.advance(90)
    assert await registry.get(session_id) is not None
    clock.advance(90)
    assert await registry.get(session_id) is not None


@pytest.mark.asyncio
async def test_sweep_removes_only_expired(registry, clock):
    old = await registry.create(VALID_TOKEN)
    clock.advance(60)
    fresh = await registry.create(VALID_TOKEN)
    clock.advance(50)

    assert await registry.sweep_expired() == 1
    assert await registry.session_ids() == [fresh]
    assert await registry.get(old) is None


@pytest.mark.asyncio
async def test_destroyed_session_never_resurrects(registry, clock):
    session_id = await registry.create(VALID_TOKEN)
    clock.advance(500)
    await registry.sweep_expired()

    clock.now = 0
    assert await registry.get(session_id) is None


@pytest.mark.asyncio
async def test_revalidate_all_revokes_failures(registry, upstream):
    good = await registry.create(VALID_TOKEN)
    upstream.add("tok-soon-bad")
    bad = await registry.create("tok-soon-bad")
    upstream.handles["tok-soon-bad"].valid = False

    results = await registry.revalidate_all()

    assert {(r.session_id, r.still_valid) for r in results} == {(good, True), (bad, False)}
    assert await registry.get(bad) is None
    assert await registry.get(good) is not None


@pytest.mark.asyncio
async def test_failed_validation_mid_lifetime_does_not_revoke_on_read(registry, upstream):
    session_id = await registry.create(VALID_TOKEN)
    upstream.handles[VALID_TOKEN].valid = False

    assert await registry.get(session_id) is not None


# ============== Resolvers ==============

@pytest.mark.asyncio
async def test_header_resolver_requires_header(registry):
    resolver = HeaderSessionResolver(registry, None)

    with pytest.raises(AuthenticationRequired, match="X-Session-ID"):
        await resolver.resolve()


@pytest.mark.asyncio
async def test_header_resolver_unknown_session(registry):
    resolver = HeaderSessionResolver(registry, "missing")

    with pytest.raises(AuthenticationRequired, match="Not authenticated"):
        await resolver.resolve()


@pytest.mark.asyncio
async def test_header_resolver_bind_reuses_inline_session(registry, upstream):
    resolver = HeaderSessionResolver(registry)
    session_id = await registry.create(VALID_TOKEN)

    resolver.bind(session_id)

    assert await resolver.resolve() is upstream.handles[VALID_TOKEN]


@pytest.mark.asyncio
async def test_bearer_resolver_session_key_includes_user_and_is_released(registry):
    resolver = BearerSessionResolver(registry, VALID_TOKEN, "u-42")

    handle = await resolver.resolve()
    session_id = resolver.session_id

    assert handle is not None
    assert session_id.startswith("session_u-42_")
    assert await resolver.resolve() is handle
    assert resolver.session_id == session_id

    await resolver.release()
    assert await registry.get(session_id) is None


@pytest.mark.asyncio
async def test_bearer_resolvers_for_same_user_get_distinct_sessions(registry):
    first = BearerSessionResolver(registry, VALID_TOKEN, "u-42")
    second = BearerSessionResolver(registry, VALID_TOKEN, "u-42")

    await first.resolve()
    await second.resolve()

    assert first.session_id != second.session_id


@pytest.mark.asyncio
async def test_bearer_resolver_invalid_token_requires_authentication(registry):
    resolver = BearerSessionResolver(registry, "tok-rejected", "u-7")

    with pytest.raises(AuthenticationRequired):
        await resolver.resolve()
    assert await registry.count() == 0


def test_bearer_resolver_refuses_inline_auth(registry):
    resolver = BearerSessionResolver(registry, VALID_TOKEN, "u-42")

    assert resolver.allows_inline_auth is False
    with pytest.raises(AuthenticationRequired, match="OAuth2"):
        resolver.bind("anything")
