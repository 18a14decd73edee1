"""Starlette application setup and CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Sequence

import requests
import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from oidc_rp.config import RelyingPartySettings
from oidc_rp.core.errors import ConfigError
from oidc_rp.core.exchanger import TokenExchanger
from oidc_rp.core.http import new_http_session
from oidc_rp.core.jwks import JWKSCache
from oidc_rp.core.service import RelyingPartyService
from oidc_rp.core.store import DiskStateStore, MemorySessionStore, MemoryStateStore, StateStore

from .auth import build_auth_routes
from .correlation import CorrelationIdMiddleware

logger = logging.getLogger("oidc-rp.servers.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_service(
    settings: RelyingPartySettings,
    *,
    http: requests.Session | None = None,
) -> RelyingPartyService:
    """Wire a :class:`RelyingPartyService` from *settings*.

    All provider calls share one private back-channel session.
    """
    http = http or new_http_session()
    config = settings.provider_config(http=http)

    state_store: StateStore
    if settings.state_store_dir:
        state_store = DiskStateStore(settings.state_store_dir)
        logger.info("Pending sign-in requests stored on disk")
    else:
        state_store = MemoryStateStore(ttl_seconds=settings.state_ttl)

    jwks_cache = JWKSCache(
        config.jwks_uri,
        http=http,
        timeout=settings.timeout,
        min_refresh_interval=settings.jwks_min_refresh,
    )
    exchanger = TokenExchanger(config, state_store, http=http, timeout=settings.timeout)
    return RelyingPartyService(
        config,
        state_store=state_store,
        session_store=MemorySessionStore(),
        jwks_cache=jwks_cache,
        exchanger=exchanger,
        scope=settings.scope,
        state_ttl=settings.state_ttl,
        clock_skew=settings.clock_skew,
    )


def create_app(
    settings: RelyingPartySettings | None = None,
    *,
    service: RelyingPartyService | None = None,
) -> Starlette:
    """Return the ASGI application.

    Raises
    ------
    ConfigError
        If settings or provider configuration are unusable.
    """
    settings = settings or RelyingPartySettings.from_env()
    svc = service or build_service(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Relying party starting for issuer=%s", svc.config.issuer)
        try:
            yield
        finally:
            removed = svc.state_store.cleanup_expired()
            logger.debug("Dropped %d expired pending sign-in request(s)", removed)
            svc.exchanger.http.close()
            logger.info("Relying party shutdown complete.")

    routes = [Route("/healthz", health_check, methods=["GET"]), *build_auth_routes(svc, settings)]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.service = svc
    app.state.settings = settings
    return app


def main(argv: Sequence[str] | None = None) -> int:
    """Run the relying party under uvicorn."""
    parser = argparse.ArgumentParser(prog="oidc-rp", description=__doc__)
    parser.add_argument("--host", help="bind address (default: APP_HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, help="bind port (default: APP_PORT or 8081)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("OIDC_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        settings = RelyingPartySettings.from_env()
        app = create_app(settings)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=args.log_level.lower(),
    )
    return 0
