"""
Configuration and settings for the menu backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database. Any of these selects the relational backend.
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "DATABASE_URL", "POSTGRES_URL", "POSTGRES_URL_NON_POOLING"
        ),
    )

    # File backend
    use_file_backend: bool = Field(
        default=False, validation_alias="MENU_USE_FILE_BACKEND"
    )
    data_dir: str = Field(default="data", validation_alias="MENU_DATA_DIR")

    # Sessions
    session_ttl_hours: int = Field(default=168, validation_alias="SESSION_TTL_HOURS")
    session_cookie_name: str = Field(default="session")
    secure_cookies: bool = Field(default=False, validation_alias="SECURE_COOKIES")

    # Published menus
    public_base_url: str = Field(
        default="http://localhost:8000", validation_alias="PUBLIC_BASE_URL"
    )

    # Admin dashboard
    admin_username: str = Field(default="admin", validation_alias="ADMIN_USERNAME")
    admin_password: Optional[str] = Field(
        default=None, validation_alias="ADMIN_PASSWORD"
    )

    # Uploads: local directory unless an S3-compatible bucket is configured
    uploads_dir: str = Field(default="uploads", validation_alias="UPLOADS_DIR")
    uploads_base_url: str = Field(
        default="/uploads", validation_alias="UPLOADS_BASE_URL"
    )
    s3_bucket: Optional[str] = Field(default=None, validation_alias="S3_BUCKET")
    s3_region: Optional[str] = Field(default=None, validation_alias="S3_REGION")
    s3_endpoint: Optional[str] = Field(default=None, validation_alias="S3_ENDPOINT")
    s3_public_base_url: Optional[str] = Field(
        default=None, validation_alias="S3_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, validation_alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, validation_alias="AWS_SECRET_ACCESS_KEY"
    )

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 3600.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
