"""Starlette application exposing one app-native login flow per process."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from app_native_auth.core.config import AuthConfig
from app_native_auth.core.orchestrator import FlowOrchestrator

from .auth import build_auth_routes
from .context import AuthAppContext
from .correlation import CorrelationIdMiddleware

logger = logging.getLogger("app-native-auth.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    config: AuthConfig | None = None,
    *,
    orchestrator: FlowOrchestrator | None = None,
    base_path: str = "/auth",
) -> Starlette:
    """Build the HTTP app.

    *config* defaults to :meth:`AuthConfig.from_env`; an *orchestrator* may be
    injected (tests pass one wired to a mock transport).
    """
    if config is None:
        config = orchestrator.config if orchestrator is not None else AuthConfig.from_env()
    orchestrator = orchestrator or FlowOrchestrator(config)
    ctx = AuthAppContext(config=config, orchestrator=orchestrator)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("App-native auth server starting (base_url=%s)", config.base_url)
        try:
            yield
        finally:
            orchestrator.reset_to_init()
            await orchestrator.client.aclose()
            logger.info("App-native auth server shutdown complete.")

    routes = [
        Route("/healthz", health_check, methods=["GET"], include_in_schema=False),
        *build_auth_routes(ctx, base_path=base_path),
    ]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.auth_context = ctx
    return app
