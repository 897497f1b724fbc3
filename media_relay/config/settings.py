"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock mode enables local development without object storage.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.relay.access import DEFAULT_TTL_SECONDS, MAX_TTL_SECONDS
from ..infrastructure.storage.client import (
    DEFAULT_PART_SIZE_BYTES,
    MIN_PART_SIZE_BYTES,
    StorageConfig,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like cors_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "WhatsApp Media Relay"
    api_version: str = "v1"
    environment: str = Field(
        default="development",
        description="Deployment environment name, reported by the health check."
    )
    port: int = Field(
        default=3000,
        description="Port used when running the module directly."
    )

    # S3 Storage Configuration
    aws_region: str = Field(
        default="us-east-1",
        description="Region of the bucket. R2 accepts 'auto'."
    )
    aws_access_key_id: str = Field(
        default="",
        description="Access key ID for the storage backend"
    )
    aws_secret_access_key: str = Field(
        default="",
        description="Secret access key for the storage backend"
    )
    s3_bucket: str = Field(
        default="whatsapp-media",
        description="Bucket that receives decrypted media"
    )
    s3_endpoint: Optional[str] = Field(
        default=None,
        description="Custom endpoint for R2/MinIO. Enables path-style addressing."
    )
    s3_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real storage. Enables local dev without a bucket."
    )
    s3_auto_create_bucket: bool = Field(
        default=False,
        description="Create the bucket at startup if it is missing."
    )
    upload_part_size_bytes: int = Field(
        default=DEFAULT_PART_SIZE_BYTES,
        ge=MIN_PART_SIZE_BYTES,
        description="Multipart part size. Bounds memory per in-flight upload."
    )

    # Signed URLs
    signed_url_expire: int = Field(
        default=DEFAULT_TTL_SECONDS,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="Lifetime of returned download URLs, in seconds."
    )

    # WhatsApp media download
    media_host: str = Field(
        default="https://mmg.whatsapp.net",
        description="CDN host that encrypted media is downloaded from."
    )
    fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for connecting to and reading from the media host."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def storage_config(self) -> StorageConfig:
        """Build the storage client configuration."""
        return StorageConfig(
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            bucket_name=self.s3_bucket,
            region=self.aws_region,
            endpoint_url=self.s3_endpoint or None,
            part_size_bytes=self.upload_part_size_bytes,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.s3_mock_mode:
            if not self.aws_access_key_id:
                missing.append("AWS_ACCESS_KEY_ID")
            if not self.aws_secret_access_key:
                missing.append("AWS_SECRET_ACCESS_KEY")
            if not self.s3_bucket:
                missing.append("S3_BUCKET")
            if not self.aws_region:
                missing.append("AWS_REGION")

        if not self.cors_origins_list:
            missing.append("CORS_ORIGINS")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
