"""
Configuration and settings for the MyDorm BFF.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import MAX_BLOB_BYTES, PAYMENT_REQUEST_TIMEOUT


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Payment backend. No base URL means demo mode.
    payment_base_url: Optional[str] = Field(default=None)
    stripe_publishable_key: Optional[str] = Field(default=None)
    payment_timeout_seconds: float = Field(default=PAYMENT_REQUEST_TIMEOUT, gt=0)

    # Firebase realtime database + storage
    firebase_credentials_path: Optional[str] = Field(default=None)
    firebase_database_url: Optional[str] = Field(default=None)
    firebase_storage_bucket: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    demo_seed_path: Optional[str] = Field(default=None)

    # Blob cache
    blob_max_bytes: int = Field(default=MAX_BLOB_BYTES, gt=0)
    default_image_path: Optional[str] = Field(default=None)

    io_workers: int = Field(default=4, ge=1)

    @property
    def use_firebase_records(self) -> bool:
        return not self.use_in_memory_backends and bool(self.firebase_database_url)

    @property
    def use_firebase_blobs(self) -> bool:
        return not self.use_in_memory_backends and bool(self.firebase_storage_bucket)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
