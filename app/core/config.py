"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from pathlib import Path

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "https://localhost:3000",
    "https://localhost:8000",
    "http://0.0.0.0:8000",  # Local development with 0.0.0.0 host
]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        app_version: Version string reported by the health endpoint.
        log_level: Level applied to the service loggers (app, api).
        api_key: API key protecting the export endpoint.
        cors_allowed_origins: List of allowed origins for CORS.
        storage_endpoint: Custom S3-compatible endpoint URL (None for AWS).
        aws_access_key_id: Access key for the object store.
        aws_secret_access_key: Secret key for the object store.
        aws_session_token: Optional session token for temporary credentials.
        aws_region: Region of the export bucket.
        s3_bucket_name: Bucket receiving exported documents.
        public_base_url: When set, links are permanent public URLs under this base.
        export_key_prefix: Prefix of every exported object's storage key.
        default_link_ttl: Validity in seconds of presigned links when the caller gives none.
        min_link_ttl: Lower bound applied to requested link TTLs.
        max_link_ttl: Upper bound applied to requested link TTLs (SigV4 allows 7 days).
        max_upload_attempts: Upper bound on write attempts per upload.
        upload_backoff_initial: First backoff delay in seconds between upload attempts.
        upload_backoff_max: Ceiling in seconds for a single backoff delay.
        overall_timeout: Deadline in seconds spanning build, upload and link issuing.
        max_artifact_bytes: Largest document accepted for upload.
        template_path: Optional DOCX template rendered with docxtpl.
        records_dir: Directory holding one JSON file per supervision log.
        s3_cleanup_max_age_hours: Age after which exported objects are swept.
    """

    app_version: str = Field(default="1.0.0")
    log_level: str = Field(default="INFO")
    api_key: str | None = Field(default=None)

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    storage_endpoint: str | None = Field(default=None)
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_session_token: str | None = Field(default=None)
    aws_region: str = Field(default="eu-north-1")
    s3_bucket_name: str | None = Field(default=None)
    public_base_url: str | None = Field(default=None)
    export_key_prefix: str = Field(default="exports/")

    default_link_ttl: int = Field(default=900, gt=0)
    min_link_ttl: int = Field(default=60, gt=0)
    max_link_ttl: int = Field(default=7 * 24 * 3600, gt=0)

    max_upload_attempts: int = Field(default=3, ge=1)
    upload_backoff_initial: float = Field(default=0.5, ge=0)
    upload_backoff_max: float = Field(default=8.0, ge=0)
    overall_timeout: float = Field(default=60.0, gt=0, description="Export deadline in seconds.")
    max_artifact_bytes: int = Field(default=20 * 1024 * 1024)

    template_path: Path | None = Field(default=None)
    records_dir: Path = Field(default=Path("data/records"))

    # TTL degli export su S3 (in ore), usato dal cleanup job S3.
    s3_cleanup_max_age_hours: int = Field(default=24 * 7)

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return list(DEFAULT_CORS_ORIGINS)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("export_key_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = v.strip().lstrip("/")
        if v and not v.endswith("/"):
            v += "/"
        return v


class StorageCredentials(BaseModel):
    """Credentials handed to the storage client. Empty when the default AWS chain is used."""

    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None

    @property
    def explicit(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


class ExportConfig(BaseModel):
    """Explicit configuration passed to the export pipeline at construction."""

    model_config = {"frozen": True}

    storage_endpoint: str | None = None
    bucket: str | None = None
    region: str = "eu-north-1"
    credentials: StorageCredentials = Field(default_factory=StorageCredentials)
    public_base_url: str | None = None
    key_prefix: str = "exports/"
    default_link_ttl: int = 900
    min_link_ttl: int = 60
    max_link_ttl: int = 7 * 24 * 3600
    max_upload_attempts: int = Field(default=3, ge=1)
    upload_backoff_initial: float = 0.5
    upload_backoff_max: float = 8.0
    overall_timeout: float = Field(default=60.0, gt=0)
    max_artifact_bytes: int = 20 * 1024 * 1024
    template_path: Path | None = None

    @classmethod
    def from_settings(cls, s: Settings) -> "ExportConfig":
        return cls(
            storage_endpoint=s.storage_endpoint,
            bucket=s.s3_bucket_name,
            region=s.aws_region,
            credentials=StorageCredentials(
                access_key_id=s.aws_access_key_id,
                secret_access_key=s.aws_secret_access_key,
                session_token=s.aws_session_token,
            ),
            public_base_url=s.public_base_url,
            key_prefix=s.export_key_prefix,
            default_link_ttl=s.default_link_ttl,
            min_link_ttl=s.min_link_ttl,
            max_link_ttl=s.max_link_ttl,
            max_upload_attempts=s.max_upload_attempts,
            upload_backoff_initial=s.upload_backoff_initial,
            upload_backoff_max=s.upload_backoff_max,
            overall_timeout=s.overall_timeout,
            max_artifact_bytes=s.max_artifact_bytes,
            template_path=s.template_path,
        )


settings = Settings()
