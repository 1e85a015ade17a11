# src/sealhub/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    blobs_router,
    files_router,
    identities_router,
    rooms_router,
    system_router,
)

__all__ = [
    "blobs_router",
    "files_router",
    "identities_router",
    "rooms_router",
    "system_router",
]
