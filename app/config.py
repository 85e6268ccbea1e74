from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_UPLOAD_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp"]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    admin_user_ids: list[str] = Field(
        default_factory=list,
        alias="ADMIN_USER_IDS",
        description="Identity keys that are created with the admin role",
    )

    database_url: str = Field("sqlite:////tmp/picvote_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")
    vote_rate_limit_per_min: int = Field(120, alias="VOTE_RATE_LIMIT_PER_MIN")

    s3_bucket: str = "picvote"
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_public_url: str | None = None

    blob_delete_timeout_s: float = Field(
        10.0,
        alias="BLOB_DELETE_TIMEOUT_S",
        description="Upper bound for a single blob delete call",
    )
    upload_max_bytes: int = Field(4_718_592, alias="UPLOAD_MAX_BYTES")
    upload_url_ttl_s: int = Field(600, alias="UPLOAD_URL_TTL_S")
    upload_allowed_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_UPLOAD_TYPES),
        alias="UPLOAD_ALLOWED_TYPES",
    )

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )
