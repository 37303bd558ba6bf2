from __future__ import annotations


class MediaEdgeError(Exception):
    """Base error for failures that end a proxied request."""

    status_code = 500

    def __init__(self, detail: str, *, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class EmptyKeyError(MediaEdgeError):
    status_code = 404


class SigningError(MediaEdgeError):
    """Origin credentials are missing or unusable; nothing was fetched."""


class UpstreamFetchError(MediaEdgeError):
    """The origin or transformation backend could not be reached."""


class TransformationBackendError(MediaEdgeError):
    """The transformation backend answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(
            f"transformation backend returned {status_code}: {body}",
            status_code=status_code,
        )
        self.body = body
