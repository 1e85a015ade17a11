# src/sealhub/main.py
"""Main entry point for the SealHub application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from sealhub.api.v1 import (
    blobs_router,
    files_router,
    identities_router,
    rooms_router,
    system_router,
)
from sealhub.core.settings import settings
from sealhub.services.crypto import get_crypto_context

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="SealHub API",
    description="Key directory and ciphertext storage for end-to-end encrypted rooms",
    version=settings.app_version,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(identities_router, prefix="/api/v1")
app.include_router(rooms_router, prefix="/api/v1")
app.include_router(files_router, prefix="/api/v1")
app.include_router(blobs_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    # Fails fast with CryptoUnavailableError if libsodium cannot initialize.
    get_crypto_context()
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Key directory and ciphertext storage for end-to-end encrypted rooms",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sealhub.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
