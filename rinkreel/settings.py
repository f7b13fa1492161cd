"""Centralized application configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=None, extra="ignore", case_sensitive=False)

    log_level: str = Field(default="INFO", description="Python logging level (e.g. INFO, DEBUG).")

    # --- Remote feed provider ---
    PROVIDER_BASE_URL: str = Field(
        default="https://api.livebarn.com",
        description="Base URL of the remote feed provider API.",
    )
    PROVIDER_EMAIL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PROVIDER_EMAIL", "LIVEBARN_EMAIL"),
        description="Account email used to authenticate with the feed provider.",
    )
    PROVIDER_PASSWORD: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PROVIDER_PASSWORD", "LIVEBARN_PASSWORD"),
        description="Account password used to authenticate with the feed provider.",
    )
    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Maximum wait in seconds for a single provider request.",
    )
    PROVIDER_MAX_RETRIES: int = Field(
        default=3,
        description="Total provider attempts for transient failures before giving up.",
    )
    PROVIDER_BACKOFF_BASE_SEC: float = Field(
        default=1.5,
        description="Base delay in seconds for exponential provider retry backoff.",
    )

    # --- Segmenting / captions ---
    SEGMENT_WINDOW_MS: int = Field(
        default=30_000,
        description="Length of the video window opened by the first comment of a segment (ms).",
    )
    CAPTION_DURATION_MS: int = Field(
        default=5_000,
        description="How long each comment caption stays on screen (ms).",
    )
    FETCH_CONCURRENCY: int = Field(
        default=3,
        description="Maximum number of segment downloads running at once within a job.",
    )

    # --- Working files ---
    WORK_DIR: Path = Field(
        default=Path("/tmp/rinkreel"),
        description="Root directory for per-job temporary and intermediate media.",
    )
    KEEP_WORK_FILES: bool = Field(
        default=False,
        description="Keep downloaded segment files after a job completes.",
    )

    # --- Encoder ---
    CONCAT_REENCODE: bool = Field(
        default=True,
        description="Re-encode concatenated segments to uniform MP4 instead of stream copy.",
    )
    CONCAT_VCODEC: str = Field(default="libx264", description="Video codec used when re-encoding output.")
    CONCAT_VCRF: int = Field(default=23, description="Constant rate factor applied during re-encode (lower = higher quality).")
    CONCAT_VPRESET: str = Field(default="medium", description="FFmpeg preset used for re-encode.")
    CONCAT_ACODEC: str = Field(default="aac", description="Audio codec used for concat re-encode.")
    CONCAT_ABITRATE: str = Field(default="128k", description="Audio bitrate when re-encoding concat output.")
    CAPTION_FORCE_STYLE: str = Field(
        default="FontSize=24,PrimaryColour=&Hffffff,OutlineColour=&H000000,BackColour=&H80000000,Bold=1",
        description="ASS force_style applied when burning comment captions.",
    )

    # --- Watchdog ---
    JOB_WATCHDOG_SECONDS: int = Field(
        default=3600,
        description="Hard cap on total job runtime in seconds (default 60 minutes).",
    )

    # --- Artifact storage ---
    storage_backend: Literal["local", "s3"] = Field(
        default="local", description="Persistent storage backend for rendered videos."
    )
    local_storage_dir: Path = Field(
        default=Path("output"),
        validation_alias=AliasChoices("LOCAL_STORAGE_DIR", "VIDEO_OUTPUT_DIR"),
        description="Directory used by the local storage backend.",
    )
    s3_bucket: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("S3_BUCKET", "S3_BUCKET_NAME"),
        description="Target S3 bucket when using the S3 storage backend.",
    )
    s3_prefix: str = Field(default="", description="Prefix applied to stored video object keys.")
    aws_access_key_id: Optional[str] = Field(
        default=None, description="AWS access key used for S3 operations."
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, description="AWS secret key used for S3 operations."
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("AWS_REGION", "S3_REGION"),
        description="AWS region for S3 interactions.",
    )

    # --- Notifications ---
    webhook_url: Optional[str] = Field(
        default=None, description="Optional URL notified whenever a job reaches a terminal state."
    )
    webhook_hmac_secret: Optional[str] = Field(
        default=None, description="Optional secret used to sign outbound webhooks."
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return (value or "INFO").strip()

    @field_validator("s3_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        raw = (value or "").strip()
        return raw.strip("/")

    @field_validator(
        "PROVIDER_EMAIL",
        "PROVIDER_PASSWORD",
        "s3_bucket",
        "aws_access_key_id",
        "aws_secret_access_key",
        "webhook_url",
        "webhook_hmac_secret",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None

    @field_validator("SEGMENT_WINDOW_MS", "CAPTION_DURATION_MS", "FETCH_CONCURRENCY")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("PROVIDER_MAX_RETRIES")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, int(value))

    @model_validator(mode="after")
    def _validate_backend(self) -> "Settings":
        if self.storage_backend == "s3":
            missing: list[str] = []
            if not self.s3_bucket:
                missing.append("S3_BUCKET")
            if not self.aws_access_key_id:
                missing.append("AWS_ACCESS_KEY_ID")
            if not self.aws_secret_access_key:
                missing.append("AWS_SECRET_ACCESS_KEY")
            if not self.aws_region:
                missing.append("AWS_REGION")
            if missing:
                joined = ", ".join(missing)
                raise ValueError(
                    "Missing required environment variables for S3 backend: " + joined
                )
        return self

    @property
    def logging_level(self) -> str:
        return self.log_level.upper()

    @property
    def has_provider_credentials(self) -> bool:
        return bool(self.PROVIDER_EMAIL and self.PROVIDER_PASSWORD)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings, raising a friendly error on failure."""

    try:
        return Settings()
    except ValidationError as exc:  # pragma: no cover - startup guard
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            messages.append(f"{location}: {error.get('msg')}")
        joined = "; ".join(messages) or str(exc)
        raise RuntimeError(f"Configuration error: {joined}") from exc
    except ValueError as exc:  # pragma: no cover - startup guard
        raise RuntimeError(f"Configuration error: {exc}") from exc


settings = get_settings()
