"""System and configuration endpoints for the SealHub API."""

from __future__ import annotations

from fastapi import APIRouter

from sealhub.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets, API keys and connection strings.

    Returns:
        Dictionary containing app metadata, scanning, preprocessing and
        transfer settings
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "jwt_algorithm": settings.jwt_algorithm,
            "access_token_expire_minutes": settings.access_token_expire_minutes,
            "debug": settings.debug,
        },
        "scanning": settings.scanning_summary,
        "preprocessing": {
            "strip_exif": settings.strip_exif,
            "reencode_images": settings.reencode_images,
            "image_max_size_mb": settings.image_max_size_mb,
            "image_max_dimension": settings.image_max_dimension,
        },
        "transfer": {
            "chunk_size_bytes": settings.chunk_size_bytes,
            "concurrency": settings.transfer_concurrency,
            "storage_provider": settings.storage_provider,
            "storage_bucket": settings.storage_bucket,
            "signed_url_expiry_seconds": settings.signed_url_expiry_seconds,
            "file_expiry_days": settings.file_expiry_days,
        },
    }
