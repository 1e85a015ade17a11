"""Application settings and configuration.

This module defines all configuration options for the SealHub service and
client core. Settings are loaded from environment variables with sensible
defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Per-upload toggles (EXIF stripping, recompression, fan-out) only provide
    defaults; callers may override them on each upload.
    """

    # Application metadata
    app_name: str = Field(default="SealHub", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Signs access tokens and signed blob URLs
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Document store
    database_url: str = Field(default="sqlite:///./sealhub.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Threat scanning
    safe_browsing_proxy_url: str | None = Field(default=None, alias="SAFE_BROWSING_PROXY_URL")
    urlscan_api_key: str | None = Field(default=None, alias="URLSCAN_API_KEY")
    urlscan_base_url: str = Field(default="https://urlscan.io", alias="URLSCAN_BASE_URL")
    scan_timeout_seconds: float = Field(default=15.0, alias="SCAN_TIMEOUT_SECONDS")
    signature_scan_enabled: bool = Field(default=False, alias="SIGNATURE_SCAN_ENABLED")
    signature_db_path: str | None = Field(default=None, alias="SIGNATURE_DB_PATH")

    # Image preprocessing
    strip_exif: bool = Field(default=True, alias="STRIP_EXIF")
    reencode_images: bool = Field(default=False, alias="REENCODE_IMAGES")
    image_max_size_mb: float = Field(default=4.0, alias="IMAGE_MAX_SIZE_MB")
    image_max_dimension: int = Field(default=1920, alias="IMAGE_MAX_DIMENSION")
    image_quality: int = Field(default=95, alias="IMAGE_QUALITY")

    # Chunked transfer and blob storage
    chunk_size_bytes: int = Field(default=64 * 1024, alias="CHUNK_SIZE_BYTES")
    transfer_concurrency: int = Field(default=4, alias="TRANSFER_CONCURRENCY")
    storage_provider: Literal["local", "memory"] = Field(default="local", alias="STORAGE_PROVIDER")
    storage_bucket: str = Field(default="encrypted", alias="STORAGE_BUCKET")
    storage_root: str = Field(default="./blobs", alias="STORAGE_ROOT")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")
    signed_url_expiry_seconds: int = Field(default=3600, alias="SIGNED_URL_EXPIRY_SECONDS")
    file_expiry_days: int = Field(default=30, alias="FILE_EXPIRY_DAYS")

    # Messaging
    message_poll_interval_seconds: float = Field(
        default=1.0,
        alias="MESSAGE_POLL_INTERVAL_SECONDS",
    )

    # Local private key storage
    key_store: Literal["memory", "encrypted_file"] = Field(default="memory", alias="KEY_STORE")
    key_store_path: str = Field(default="./keys", alias="KEY_STORE_PATH")
    key_store_passphrase: str | None = Field(default=None, alias="KEY_STORE_PASSPHRASE")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def image_max_size_bytes(self) -> int:
        """Return the recompression size ceiling in bytes."""
        return int(self.image_max_size_mb * 1024 * 1024)

    @property
    def scanning_summary(self) -> dict[str, bool]:
        """Return which scan sources are configured, without exposing secrets."""
        return {
            "signature": self.signature_scan_enabled,
            "reputation": bool(self.safe_browsing_proxy_url),
            "third_party": bool(self.urlscan_api_key),
        }


settings = Settings()  # type: ignore[call-arg]
