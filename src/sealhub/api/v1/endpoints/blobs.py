# src/sealhub/api/v1/endpoints/blobs.py
"""Signed-URL access to encrypted blobs."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Response, status

from sealhub.core.errors import TransferFailedError
from sealhub.storage.blobs import BlobRef, verify_blob_token

from ..dependencies import BlobStoreDep

router = APIRouter(prefix="/blobs", tags=["blobs"])


@router.get("/{bucket}/{path:path}")
async def download_blob(
    bucket: str,
    path: str,
    blobs: BlobStoreDep,
    token: str = Query(..., description="Signed read token from the blob URL"),
) -> Response:
    """Stream one ciphertext blob. Blobs are opaque; no auth beyond the token."""
    ref = BlobRef(bucket=bucket, path=path)
    if not verify_blob_token(ref.key, token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired blob token",
        )
    try:
        data = await blobs.get(ref)
    except TransferFailedError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blob not found") from exc
    return Response(content=data, media_type="application/octet-stream")
