"""Application configuration handled with Pydantic models."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Literal

from dotenv import dotenv_values
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator

ENV_PREFIX = "YOLO_"


def _collect_env(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Load .env + OS variables and normalise keys."""

    raw: dict[str, Any] = {}
    sources = [dotenv_values(".env"), os.environ]
    for source in sources:
        for key, value in source.items():
            if value in (None, ""):
                continue
            key_upper = key.upper()
            if key_upper.startswith(prefix):
                stripped = key_upper[len(prefix) :]
            else:
                stripped = key_upper
            raw[stripped] = value
            raw[stripped.lower()] = value
    return raw


class Settings(BaseModel):
    """Central configuration for the Yolo Transcript service."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, validate_assignment=False)

    api_title: str = Field(default="Yolo Transcript")
    api_version: str = Field(default="0.1.0")
    api_description: str = Field(
        default="Transcription SaaS backed by AssemblyAI, Paddle credits and Google Drive sync.",
    )

    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL"),
    )
    app_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("APP_URL", "NEXT_PUBLIC_APP_URL"),
    )
    frontend_origin: str | None = Field(default=None)
    frontend_origin_regex: str | None = Field(default=None)

    redis_url: str = Field(default="redis://redis:6379/0")
    rq_default_queue: str = Field(default="transcription-status")
    rq_job_timeout: int = Field(default=300)
    rq_result_ttl: int = Field(default=86400)
    rq_failure_ttl: int = Field(default=3600)
    queue_backend: Literal["auto", "redis", "memory"] = Field(default="auto")

    database_url: str = Field(
        default="postgresql+psycopg2://postgres:postgres@db:5432/yolo_transcript",
        validation_alias=AliasChoices("DATABASE_URL"),
    )

    s3_endpoint_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("S3_ENDPOINT", "S3_ENDPOINT_URL"),
    )
    s3_region_name: str = Field(default="us-east-1")
    s3_access_key: str | None = Field(default=None, validation_alias=AliasChoices("S3_ACCESS_KEY"))
    s3_secret_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("S3_SECRET_KEY"))
    s3_bucket_media: str = Field(
        default="media",
        min_length=1,
        validation_alias=AliasChoices("S3_BUCKET_MEDIA", "S3_BUCKET"),
    )
    storage_dir: str = Field(default="storage")

    max_upload_size_mb: int = Field(default=100, ge=1)
    allowed_upload_extensions: list[str] = Field(
        default_factory=lambda: ["mp3", "wav", "m4a", "flac", "mp4", "mov", "avi", "ogg", "webm"],
    )

    http_timeout_seconds: float = Field(default=30.0, gt=0)

    assemblyai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("ASSEMBLYAI_API_KEY", "ASSEMBLY_API_KEY"),
    )
    assemblyai_base_url: str = Field(default="https://api.assemblyai.com/v2")
    assemblyai_language_code: str = Field(default="en")
    realtime_token_ttl_seconds: int = Field(default=3600, ge=60)

    seconds_per_credit: int = Field(default=360, ge=1)
    url_estimated_duration_seconds: int = Field(default=300, ge=1)
    trial_credits: int = Field(default=30, ge=0)
    status_check_delays: list[int] = Field(default_factory=lambda: [20, 60, 180])

    paddle_webhook_secret: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "PADDLE_WEBHOOK_SECRET",
            "PADDLE_NOTIFICATION_WEBHOOK_SECRET",
        ),
    )
    paddle_webhook_tolerance_seconds: int | None = Field(default=None, ge=1)
    paddle_environment: Literal["sandbox", "production"] = Field(
        default="sandbox",
        validation_alias=AliasChoices("PADDLE_ENVIRONMENT", "NEXT_PUBLIC_PADDLE_ENVIRONMENT"),
    )
    paddle_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_API_KEY"),
    )
    paddle_sandbox_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_SANDBOX_API_KEY"),
    )
    paddle_client_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_CLIENT_TOKEN", "NEXT_PUBLIC_PADDLE_CLIENT_TOKEN"),
    )
    paddle_price_starter: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_PRICE_STARTER", "NEXT_PUBLIC_PADDLE_PRICE_STARTER"),
    )
    paddle_price_pro: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_PRICE_PRO", "NEXT_PUBLIC_PADDLE_PRICE_PRO"),
    )
    paddle_price_creator: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_PRICE_CREATOR", "NEXT_PUBLIC_PADDLE_PRICE_CREATOR"),
    )
    paddle_price_power: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PADDLE_PRICE_POWER", "NEXT_PUBLIC_PADDLE_PRICE_POWER"),
    )
    test_user_email: str | None = Field(default=None, validation_alias=AliasChoices("TEST_USER_EMAIL"))

    google_client_id: str | None = Field(default=None, validation_alias=AliasChoices("GOOGLE_CLIENT_ID"))
    google_client_secret: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_CLIENT_SECRET"),
    )
    google_redirect_uri: str | None = Field(default=None, validation_alias=AliasChoices("GOOGLE_REDIRECT_URI"))
    google_drive_redirect_uri: str | None = Field(default=None)
    google_drive_default_folder: str = Field(default="/Transcriptions")

    sanity_project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SANITY_PROJECT_ID", "NEXT_PUBLIC_SANITY_PROJECT_ID"),
    )
    sanity_dataset: str = Field(
        default="production",
        validation_alias=AliasChoices("SANITY_DATASET", "NEXT_PUBLIC_SANITY_DATASET"),
    )
    sanity_api_version: str = Field(
        default="2023-05-03",
        validation_alias=AliasChoices("SANITY_API_VERSION", "NEXT_PUBLIC_SANITY_API_VERSION"),
    )
    sanity_use_cdn: bool = Field(default=False)

    jwt_secret_key: SecretStr = Field(
        default=SecretStr("local-dev-secret"),
        validation_alias=AliasChoices("JWT_SECRET", "JWT_SECRET_KEY"),
    )
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiration_minutes: int = Field(default=60, ge=1)

    prometheus_namespace: str = Field(default="yolo_transcript")

    @field_validator("allowed_upload_extensions", "status_check_delays", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip().lstrip(".").lower() for item in value.split(",") if item.strip()]
        return value

    @property
    def jwt_secret(self) -> str:
        """Return the decrypted JWT secret string."""

        return self.jwt_secret_key.get_secret_value()

    @property
    def google_drive_callback_url(self) -> str:
        if self.google_drive_redirect_uri:
            return self.google_drive_redirect_uri
        return f"{self.app_url.rstrip('/')}/api/integrations/google-drive/callback"

    @property
    def paddle_price_ids(self) -> dict[str, str | None]:
        return {
            "STARTER": self.paddle_price_starter,
            "PRO": self.paddle_price_pro,
            "CREATOR": self.paddle_price_creator,
            "POWER": self.paddle_price_power,
        }

    def active_paddle_api_key(self) -> str | None:
        """Pick the Paddle key matching the configured environment."""

        key = self.paddle_sandbox_api_key if self.paddle_environment == "sandbox" else self.paddle_api_key
        if key is None:
            key = self.paddle_api_key
        return key.get_secret_value() if key is not None else None

    @classmethod
    def load(cls) -> "Settings":
        data = _collect_env()
        instance = cls.model_validate(data)
        _validate_required_settings(instance)
        return instance


@lru_cache()
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance."""

    return Settings.load()


def _validate_required_settings(settings: Settings) -> None:
    """Fail fast when essential secrets are missing or placeholders."""

    missing: dict[str, Any] = {}
    secret = settings.jwt_secret_key.get_secret_value()
    if secret in {"", "change-me", "super-secret", "please-change-this-secret"}:
        missing["YOLO_JWT_SECRET_KEY"] = "Define a strong JWT secret."
    if settings.app_env == "production" and secret == "local-dev-secret":
        missing["YOLO_JWT_SECRET_KEY"] = "The development JWT secret cannot be used in production."
    if not settings.status_check_delays:
        missing["YOLO_STATUS_CHECK_DELAYS"] = "At least one status check delay is required."
    if missing:
        details = "; ".join(f"{key}: {reason}" for key, reason in missing.items())
        raise ValueError(f"Incomplete configuration: {details}")

