"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="PostgreSQL async connection string",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # JWT
    jwt_secret_key: str = Field(min_length=32, description="Secret key for signing JWTs (minimum 32 characters)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=30,
        description="Access token expiration in minutes",
        gt=0,
    )

    # Import uploads
    import_storage_backend: str = Field(
        default="local",
        description="Where raw CSV uploads are kept: 'local' or 's3'",
    )
    import_upload_dir: str = Field(
        default="./uploads/imports",
        description="Directory for raw CSV uploads when using local storage",
    )
    import_max_file_size_mb: int = Field(
        default=20,
        description="Maximum CSV upload size in megabytes",
        gt=0,
    )

    @field_validator("import_storage_backend")
    @classmethod
    def validate_import_storage_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("local", "s3"):
            msg = "import_storage_backend must be 'local' or 's3'"
            raise ValueError(msg)
        return v

    # Import pipeline
    import_default_phone_code: str = Field(
        default="51",
        description="Country calling code applied to rows without one",
    )
    import_commit_cooldown_seconds: float = Field(
        default=0.0,
        description="Pause between committed rows (lets a cancel request land mid-commit)",
        ge=0,
    )
    import_stalled_after_minutes: int = Field(
        default=30,
        description="Minutes after which a validating/processing import is considered stalled",
        gt=0,
    )

    # S3-compatible object storage for uploads
    s3_bucket: str | None = Field(
        default=None,
        description="Bucket holding raw CSV uploads",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint for S3-compatible providers (R2, MinIO)",
    )
    s3_region: str = Field(
        default="us-east-1",
        description="Bucket region",
    )
    s3_access_key_id: str | None = Field(
        default=None,
        description="Access key for the upload bucket",
    )
    s3_secret_access_key: str | None = Field(
        default=None,
        description="Secret key for the upload bucket",
    )
    s3_prefix: str = Field(
        default="imports",
        description="Key prefix within the bucket",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Write stderr logs as JSON lines",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def import_max_file_size_bytes(self) -> int:
        """Upload size limit in bytes."""
        return self.import_max_file_size_mb * 1024 * 1024


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
