# src/sealhub/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .blobs import router as blobs_router
from .files import router as files_router
from .identities import router as identities_router
from .rooms import router as rooms_router
from .system import router as system_router

__all__ = [
    "blobs_router",
    "files_router",
    "identities_router",
    "rooms_router",
    "system_router",
]
