from __future__ import annotations

import mimetypes
import posixpath
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

MP4_TYPES = frozenset({"video/mp4", "application/mp4"})

# Types the interpreter's built-in table may lack, depending on its version.
_EXTRA_TYPES = {
    "avif": "image/avif",
    "webp": "image/webp",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "webm": "video/webm",
    "mp4": "video/mp4",
}


class MediaClass(str, Enum):
    IMAGE = "image"
    MP4_VIDEO = "mp4-video"
    OTHER_VIDEO = "other-video"
    PASSTHROUGH = "passthrough"

    @property
    def is_video(self) -> bool:
        return self in {MediaClass.MP4_VIDEO, MediaClass.OTHER_VIDEO}


def is_passthrough(path: str, prefix: str) -> bool:
    """Check whether a path belongs to the transformation backend itself."""
    if not prefix:
        return False
    return path.startswith(prefix) or path == prefix.rstrip("/")


class ContentClassifier:
    """Classify object keys by MIME type.

    The lookup table is built from the interpreter's defaults only, never from
    the host's ``mime.types`` files, so every deployment classifies a key the
    same way. Each configured video extension is registered as ``video/*`` so
    that the extension set always wins over a missing or odd table entry.
    Other ``video/*`` entries of the table (``.mpg``, ``.qt``) stay images
    unless their extension is configured.
    """

    def __init__(self, video_extensions: Iterable[str]):
        self._types = mimetypes.MimeTypes(filenames=())
        for ext, mime in _EXTRA_TYPES.items():
            if self._types.types_map[True].get(f".{ext}") is None:
                self._types.add_type(mime, f".{ext}")
        self._video_extensions = frozenset(
            ext.lstrip(".").lower() for ext in video_extensions
        )
        for ext in self._video_extensions:
            current = self._types.types_map[True].get(f".{ext}")
            if current is None or not (
                current.startswith("video/") or current in MP4_TYPES
            ):
                self._types.add_type(f"video/x-{ext}", f".{ext}")

    def mime_type(self, key: str) -> str | None:
        _, ext = posixpath.splitext(key)
        if not ext:
            return None
        table = self._types.types_map[True]
        return table.get(ext) or table.get(ext.lower())

    def classify(self, key: str) -> MediaClass:
        """Video needs a configured extension or an MP4 type; all else is image."""
        _, ext = posixpath.splitext(key)
        mime = self.mime_type(key)
        if mime in MP4_TYPES:
            return MediaClass.MP4_VIDEO
        if ext[1:].lower() in self._video_extensions:
            return MediaClass.OTHER_VIDEO
        return MediaClass.IMAGE
