from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from .config import Settings, get_settings
from .engine.cache import RecentBlocksCache
from .engine.streaming import RecentBlocksStream
from .logging_config import configure_production_logging
from .observability import configure_metrics
from .providers.base import BlockProvider
from .providers.geyser import GeyserBlockProvider
from .providers.rpc import RpcBlockProvider
from .routers import health, recent_blocks

LOGGER = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def create_app(
    settings: Optional[Settings] = None,
    rpc_provider: Optional[BlockProvider] = None,
    geyser_provider: Optional[BlockProvider] = None,
) -> FastAPI:
    """Build the application and the single shared recent-blocks stream."""
    settings = settings or get_settings()
    configure_metrics(settings.metrics_enabled)
    rpc_provider = rpc_provider or RpcBlockProvider(
        settings.rpc_endpoint,
        commitment=settings.rpc_commitment,
        timeout_sec=settings.rpc_timeout_sec,
    )
    geyser_provider = geyser_provider or GeyserBlockProvider(
        settings.geyser_grpc_url, settings.geyser_grpc_token
    )

    stream = RecentBlocksStream.from_settings(settings, rpc_provider, geyser_provider)
    cache = RecentBlocksCache(
        rpc_provider,
        geyser_provider,
        ttl_ms=settings.recent_blocks_cache_ttl_ms,
        primary_enabled=settings.enable_geyser_recent_blocks,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        LOGGER.info("Using RPC endpoint %s (geyser=%s)", settings.rpc_endpoint, settings.enable_geyser_recent_blocks)
        yield
        stream.close()
        await rpc_provider.aclose()
        await geyser_provider.aclose()

    app = FastAPI(title="Solana Explorer", description="Recent blocks API and live stream", lifespan=lifespan)
    app.state.settings = settings
    app.state.recent_blocks_stream = stream
    app.state.recent_blocks_cache = cache

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(recent_blocks.router, prefix="/api", tags=["recent-blocks"])

    if settings.metrics_enabled:
        @app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_production_logging(log_level=settings.log_level, enable_file_logging=False)
    return create_app(settings)
