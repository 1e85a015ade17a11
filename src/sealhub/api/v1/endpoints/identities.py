# src/sealhub/api/v1/endpoints/identities.py
"""Public key publishing and lookup."""

from __future__ import annotations

import nacl.bindings
from fastapi import APIRouter, HTTPException, status

from sealhub.schemas.identity import IdentityResponse, PublicKeyPublish
from sealhub.services.identity import IdentityService
from sealhub.utils.codec import base64_to_key

from ..dependencies import CurrentUserIdDep, DocumentStoreDep

PUBLIC_KEY_BYTES = nacl.bindings.crypto_box_PUBLICKEYBYTES

router = APIRouter(prefix="/identities", tags=["identities"])


@router.put("/me", response_model=IdentityResponse)
async def publish_public_key(
    payload: PublicKeyPublish,
    current_user_id: CurrentUserIdDep,
    store: DocumentStoreDep,
) -> IdentityResponse:
    """Publish (or replace) the caller's public key. The latest write wins."""
    try:
        public_key = base64_to_key(payload.public_key)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Public key must be valid base64",
        ) from exc
    if len(public_key) != PUBLIC_KEY_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Public key must be {PUBLIC_KEY_BYTES} bytes",
        )

    await IdentityService(store).publish(current_user_id, public_key)
    identity = await store.get_identity(current_user_id)
    return IdentityResponse.model_validate(identity)


@router.get("/{user_id}", response_model=IdentityResponse)
async def get_identity(user_id: str, store: DocumentStoreDep) -> IdentityResponse:
    """Return the public key a user has published."""
    identity = await store.get_identity(user_id)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No public key published for this user",
        )
    return IdentityResponse.model_validate(identity)
