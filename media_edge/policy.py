from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from .classify import MediaClass
from .signing import SigningMode

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .settings import CacheSettings, TransformSettings

ImageFormat = Literal["avif", "webp"]

NO_CACHE = -1


def accepted_types(accept: str | None) -> set[str]:
    """Return the media ranges an ``Accept`` header allows, lowercased.

    Ranges explicitly refused with ``q=0`` are left out.
    """
    types: set[str] = set()
    if not accept:
        return types
    for item in accept.split(","):
        media_range, *params = (part.strip() for part in item.split(";"))
        if not media_range:
            continue
        refused = False
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() != "q":
                continue
            try:
                refused = float(value) == 0
            except ValueError:
                refused = False
        if not refused:
            types.add(media_range.lower())
    return types


def negotiate_format(accept: str | None) -> ImageFormat | None:
    types = accepted_types(accept)
    if "image/avif" in types:
        return "avif"
    if "image/webp" in types:
        return "webp"
    return None


@dataclass(frozen=True)
class ImageDirective:
    quality: int
    origin_auth: str
    format: ImageFormat | None = None

    @property
    def kind(self) -> str:
        return "image"

    def options(self) -> str:
        parts = []
        if self.format is not None:
            parts.append(f"format={self.format}")
        parts.append(f"quality={self.quality}")
        if self.origin_auth:
            parts.append(f"origin-auth={self.origin_auth}")
        return ",".join(parts)


@dataclass(frozen=True)
class VideoDirective:
    width: int
    mode: str = "video"
    fit: str = "contain"
    output: str = "mp4"

    @property
    def kind(self) -> str:
        return "video"

    def options(self) -> str:
        return f"mode={self.mode},width={self.width},fit={self.fit},format={self.output}"


@dataclass(frozen=True)
class NoDirective:
    @property
    def kind(self) -> str:
        return "none"

    def options(self) -> str:
        return ""


TransformationDirective = ImageDirective | VideoDirective | NoDirective


def select_directive(
    media_class: MediaClass, accept: str | None, settings: TransformSettings
) -> TransformationDirective:
    """Pick the transformation for a request.

    Only images are negotiated against ``Accept``. MP4 video always gets the
    configured transcode profile and everything else is proxied untouched.
    """
    if media_class is MediaClass.IMAGE:
        return ImageDirective(
            quality=settings.image_quality,
            origin_auth=settings.image_origin_auth,
            format=negotiate_format(accept),
        )
    if media_class is MediaClass.MP4_VIDEO:
        return VideoDirective(
            width=settings.video_width,
            mode=settings.video_mode,
            fit=settings.video_fit,
            output=settings.video_format,
        )
    return NoDirective()


def signing_mode_for(media_class: MediaClass) -> SigningMode:
    # The MP4 transcode hop receives the origin URL as an opaque string, so
    # the signature has to live in the query.
    if media_class is MediaClass.MP4_VIDEO:
        return SigningMode.QUERY
    return SigningMode.HEADER


@dataclass(frozen=True)
class CachePolicy:
    """TTLs keyed by status bucket (``"200-299"``, ``"404"``, ...)."""

    by_status: Mapping[str, int]

    def ttl_for(self, status: int) -> int:
        if 500 <= status <= 599:
            return NO_CACHE
        for bucket, ttl in self.by_status.items():
            low, _, high = bucket.partition("-")
            if int(low) <= status <= int(high or low):
                return ttl
        return NO_CACHE


def cache_policy_for(media_class: MediaClass, settings: CacheSettings) -> CachePolicy:
    success = settings.video_ttl if media_class.is_video else settings.image_ttl
    return CachePolicy(
        by_status={
            "200-299": success,
            "404": settings.not_found_ttl,
            "500-599": NO_CACHE,
        }
    )


def ttl_for_status(media_class: MediaClass, status: int, settings: CacheSettings) -> int:
    return cache_policy_for(media_class, settings).ttl_for(status)


def cache_control_hint(ttl: int) -> str:
    if ttl <= 0:
        return "no-store"
    return f"public, max-age={ttl}"
