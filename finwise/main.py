"""Finwise billing service: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from finwise.api.v1.billing import router as billing_router
from finwise.api.v1.webhooks import router as webhooks_router
from finwise.billing.rate_limit import build_rate_limiter
from finwise.billing.stripe_client import build_stripe_client
from finwise.config import Settings, get_settings
from finwise.database import create_engine, create_session_factory

# Configure root logger so all finwise.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app(settings: Settings) -> FastAPI:
    """Build the application. Every shared client is created from ``settings``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build shared clients on startup and release them on shutdown."""
        engine = create_engine(settings)
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)

        app.state.session_factory = create_session_factory(engine)
        app.state.stripe_client = build_stripe_client(settings)
        app.state.rate_limiter = build_rate_limiter(redis_client, settings)
        yield
        # Shutdown: dispose engine connections
        await redis_client.aclose()
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Subscription billing and access control for Finwise.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(billing_router)
    app.include_router(webhooks_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app(get_settings())
