from __future__ import annotations

from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class OriginSettings(BaseSettings):
    """Configuration for the private object store."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    endpoint: str = Field(
        default="https://storage.googleapis.com",
        validation_alias="MEDIA_EDGE_ORIGIN_ENDPOINT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_EDGE_ACCESS_KEY_ID",
            "GCS_HMAC_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_EDGE_SECRET_ACCESS_KEY",
            "GCS_HMAC_SECRET_ACCESS_KEY",
        ),
    )
    bucket: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MEDIA_EDGE_BUCKET", "GCS_BUCKET"),
    )
    region: str = Field(default="auto", validation_alias="MEDIA_EDGE_REGION")
    service: str = Field(default="s3", validation_alias="MEDIA_EDGE_SERVICE")
    presign_expires: int = Field(
        default=3600,
        validation_alias="MEDIA_EDGE_PRESIGN_EXPIRES",
    )


class TransformSettings(BaseSettings):
    """Configuration for the external transformation backend."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    passthrough_prefix: str = Field(
        default="/cdn-cgi/",
        validation_alias="MEDIA_EDGE_PASSTHROUGH_PREFIX",
    )
    image_path: str = Field(
        default="/cdn-cgi/image",
        validation_alias="MEDIA_EDGE_IMAGE_PATH",
    )
    video_path: str = Field(
        default="/cdn-cgi/media",
        validation_alias="MEDIA_EDGE_VIDEO_PATH",
    )
    public_base_url: str | None = Field(
        default=None,
        validation_alias="MEDIA_EDGE_PUBLIC_BASE_URL",
    )
    backend_url: str = Field(
        default="http://127.0.0.1:8081",
        validation_alias="MEDIA_EDGE_TRANSFORM_BACKEND_URL",
    )
    image_enabled: bool = Field(
        default=True,
        validation_alias="MEDIA_EDGE_IMAGE_TRANSFORMS",
    )
    image_quality: int = Field(default=85, validation_alias="MEDIA_EDGE_IMAGE_QUALITY")
    image_origin_auth: str = Field(
        default="share-publicly",
        validation_alias="MEDIA_EDGE_IMAGE_ORIGIN_AUTH",
    )
    video_mode: str = Field(default="video", validation_alias="MEDIA_EDGE_VIDEO_MODE")
    video_width: int = Field(default=720, validation_alias="MEDIA_EDGE_VIDEO_WIDTH")
    video_fit: str = Field(default="contain", validation_alias="MEDIA_EDGE_VIDEO_FIT")
    video_format: str = Field(default="mp4", validation_alias="MEDIA_EDGE_VIDEO_FORMAT")
    video_extensions: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("mp4", "webm", "mov", "avi", "mkv"),
        validation_alias="MEDIA_EDGE_VIDEO_EXTENSIONS",
    )

    @field_validator("video_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value: object) -> tuple[str, ...]:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set)):
            return tuple(
                str(ext).strip().lstrip(".").lower()
                for ext in value
                if str(ext).strip()
            )
        msg = "Invalid video extension list"
        raise ValueError(msg)


class CacheSettings(BaseSettings):
    """Cache lifetimes handed to the edge cache, in seconds (-1 = never)."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    image_ttl: int = Field(default=30, validation_alias="MEDIA_EDGE_IMAGE_TTL")
    video_ttl: int = Field(default=86400, validation_alias="MEDIA_EDGE_VIDEO_TTL")
    not_found_ttl: int = Field(default=10, validation_alias="MEDIA_EDGE_NOT_FOUND_TTL")


def load_origin_settings_from_env() -> OriginSettings:
    """Load object store settings from environment variables.

    Returns:
        OriginSettings instance populated from environment variables.
    """
    return OriginSettings()


def load_transform_settings_from_env() -> TransformSettings:
    """Load transformation backend settings from environment variables.

    Returns:
        TransformSettings instance populated from environment variables.
    """
    return TransformSettings()


def load_cache_settings_from_env() -> CacheSettings:
    return CacheSettings()
