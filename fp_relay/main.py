"""
Fingerprint Relay — Application Entry Point.

Starts the FastAPI application exposing the identification relay and
the operational endpoints.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fp_relay.config import settings
from fp_relay.api.routes import router as api_router
from fp_relay.relay.client import close_identification_client
from fp_relay.relay.handler import router as relay_router

logger = logging.getLogger("fp_relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup / shutdown lifecycle."""
    # ── Startup ──────────────────────────────────────────
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        force=True,
    )
    logger.info("Fingerprint Relay v%s starting…", "0.1.0")

    if not settings.api_key:
        logger.warning(
            "No Fingerprint API key configured — relay requests will fail. "
            "Set FINGERPRINT_API_KEY.",
        )
    logger.info("Relaying identification requests to %s", settings.upstream_url)

    yield

    # ── Shutdown ─────────────────────────────────────────
    await close_identification_client()
    logger.info("Fingerprint Relay stopped.")


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        description="Server-side relay for device fingerprint identification",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────
    app.include_router(api_router, prefix="/api")
    app.include_router(relay_router, prefix="/api")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "fp_relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
