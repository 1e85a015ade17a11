"""Identity-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PublicKeyPublish(BaseModel):
    """Schema for publishing the caller's public key."""

    public_key: str = Field(..., description="Standard base64 encoded Curve25519 public key")


class IdentityResponse(BaseModel):
    """Schema for a published identity."""

    user_id: str
    public_key: str = Field(validation_alias="public_key_b64")
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
