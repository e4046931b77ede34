import logging
import os
from collections.abc import Mapping
from datetime import timedelta

from pydantic import BaseModel, Field

DEVELOPMENT_SEGMENT_SECONDS = 60
PRODUCTION_SEGMENT_SECONDS = 900


class Settings(BaseModel):
    """
    Runtime configuration. Build with `Settings.from_env()` in production;
    tests construct it directly.
    """

    environment: str = "development"

    livekit_api_key: str | None = None
    livekit_api_secret: str | None = None
    livekit_api_url: str | None = None
    webhook_secret: str | None = None

    spaces_endpoint: str | None = None
    spaces_bucket: str | None = None
    spaces_key: str | None = None
    spaces_secret: str | None = None
    s3_region: str | None = None

    auth_jwt_secret: str | None = None

    segment_duration_seconds: int | None = None
    participant_token_ttl: timedelta = timedelta(hours=8)
    admin_token_ttl: timedelta = timedelta(minutes=5)
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    provider_max_retries: int = Field(default=2, ge=0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(name)
            return value or None

        values: dict = {
            "environment": env.get("SHIFTCAM_ENV", "development"),
            "livekit_api_key": _get("LIVEKIT_API_KEY"),
            "livekit_api_secret": _get("LIVEKIT_API_SECRET"),
            "livekit_api_url": _get("LIVEKIT_API_URL"),
            "webhook_secret": _get("LIVEKIT_WEBHOOK_SECRET"),
            "spaces_endpoint": _get("DO_SPACES_ENDPOINT"),
            "spaces_bucket": _get("DO_SPACES_BUCKET"),
            "spaces_key": _get("DO_SPACES_KEY"),
            "spaces_secret": _get("DO_SPACES_SECRET"),
            "s3_region": _get("S3_REGION"),
            "auth_jwt_secret": _get("AUTH_JWT_SECRET"),
            "segment_duration_seconds": _get("SEGMENT_DURATION_SECONDS"),
            "log_level": env.get("LOG_LEVEL", "INFO"),
        }
        if timeout := _get("PROVIDER_TIMEOUT_SECONDS"):
            values["provider_timeout_seconds"] = timeout
        if retries := _get("PROVIDER_MAX_RETRIES"):
            values["provider_max_retries"] = retries
        return cls.model_validate(values)

    @property
    def segment_duration(self) -> int:
        if self.segment_duration_seconds is not None:
            return self.segment_duration_seconds
        if self.environment == "production":
            return PRODUCTION_SEGMENT_SECONDS
        return DEVELOPMENT_SEGMENT_SECONDS

    @property
    def provider_configured(self) -> bool:
        return bool(
            self.livekit_api_key
            and self.livekit_api_secret
            and self.livekit_api_url
        )

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.spaces_endpoint
            and self.spaces_bucket
            and self.spaces_key
            and self.spaces_secret
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
