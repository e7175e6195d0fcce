"""The long-lived service object.

McpService owns every store (sessions, authorization codes, callback
sessions, pickup tokens, open streams) and the collaborators that use
them. HTTP handlers receive it through the get_service dependency
instead of reaching for module-level state.
"""

import logging

import httpx
from fastapi import Request

from config import Config
from connections import ConnectionManager
from dispatcher import Dispatcher
from oauth.broker import AuthorizationBroker
from oauth.stores import EphemeralStore
from oauth.verifier import CredentialVerifier
from sessions import SessionRegistry
from sweeper import PeriodicSweeper
from tools import ToolCatalog
from upstream import UpstreamApi

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


class McpService:
    def __init__(self, config: Config, upstream, verifier, registry: SessionRegistry,
                 broker: AuthorizationBroker, catalog: ToolCatalog, dispatcher: Dispatcher,
                 connections: ConnectionManager, sweeper: PeriodicSweeper,
                 pickup_tokens: EphemeralStore):
        self.config = config
        self.upstream = upstream
        self.verifier = verifier
        self.registry = registry
        self.broker = broker
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.connections = connections
        self.sweeper = sweeper
        self.pickup_tokens = pickup_tokens

    async def startup(self) -> None:
        self.sweeper.start()
        logger.info(f"[STARTUP] Service ready: {len(self.catalog)} tools, auth mode {self.config.auth_mode}")

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.connections.close_all()
        await self.registry.clear()
        await self.verifier.aclose()
        await self.upstream.aclose()
        logger.info("[SHUTDOWN] Service stopped")


def build_service(config: Config, http_client: httpx.AsyncClient = None) -> McpService:
    """Wire the service from config.

    Args:
        config: Loaded configuration.
        http_client: Client for every outbound call (tests pass one with a
            mock transport). The caller keeps ownership. When omitted, the
            upstream factory and the verifier each open and close their own.
    """
    upstream = UpstreamApi(config.upstream_base_url, timeout=config.upstream_timeout, http_client=http_client)
    verifier = CredentialVerifier(config.upstream_base_url, timeout=config.identity_timeout, http_client=http_client)

    registry = SessionRegistry(upstream.handle_for, ttl=config.session_ttl)
    broker = AuthorizationBroker(
        verifier,
        config.base_uri,
        codes=EphemeralStore("authorization code", ttl=config.auth_code_ttl),
        callbacks=EphemeralStore("callback session", ttl=config.auth_code_ttl),
        auth_mode=config.auth_mode,
        login_url=config.login_url,
    )
    pickup_tokens = EphemeralStore("pickup token", ttl=config.pickup_token_ttl)
    catalog = ToolCatalog()
    dispatcher = Dispatcher(catalog, verifier, registry, server_version=VERSION)
    connections = ConnectionManager(dispatcher)

    sweeper = PeriodicSweeper()
    sweeper.add_job("sessions", config.session_sweep_interval, registry.sweep_expired)
    sweeper.add_job("authorizations", config.auth_sweep_interval, broker.sweep_expired)
    sweeper.add_job("pickup tokens", config.auth_sweep_interval, pickup_tokens.sweep_expired)

    return McpService(
        config=config,
        upstream=upstream,
        verifier=verifier,
        registry=registry,
        broker=broker,
        catalog=catalog,
        dispatcher=dispatcher,
        connections=connections,
        sweeper=sweeper,
        pickup_tokens=pickup_tokens,
    )


def get_service(request: Request) -> McpService:
    """FastAPI dependency returning the app's service."""
    return request.app.state.service
