from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from botocore.auth import SIGV4_TIMESTAMP, S3SigV4Auth, S3SigV4QueryAuth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError

from .errors import SigningError
from .keys import quote_key

if TYPE_CHECKING:
    from .settings import OriginSettings

LOG = logging.getLogger("media_edge.signing")


class SigningMode(str, Enum):
    HEADER = "header"
    QUERY = "query"


@dataclass(frozen=True)
class SignedOriginRequest:
    url: str
    mode: SigningMode
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    expires: int | None = None


class _PinnedTimestamp:
    """Sign with a caller-supplied timestamp instead of the wall clock."""

    def __init__(self, *args, timestamp: datetime, **kwargs):
        super().__init__(*args, **kwargs)
        self._timestamp = timestamp.astimezone(UTC).strftime(SIGV4_TIMESTAMP)

    def _modify_request_before_signing(self, request: AWSRequest) -> None:
        request.context["timestamp"] = self._timestamp
        super()._modify_request_before_signing(request)


class _HeaderAuth(_PinnedTimestamp, S3SigV4Auth):
    pass


class _QueryAuth(_PinnedTimestamp, S3SigV4QueryAuth):
    pass


def _usable(value: str | None) -> bool:
    return bool(value) and not any(ch.isspace() for ch in value)


class OriginSigner:
    """Build SigV4-signed GET requests for objects in the private store.

    The signer holds only immutable configuration and can be shared by any
    number of concurrent requests. Credentials are checked on every call so a
    misconfigured deployment fails each request instead of refusing to boot.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str | None,
        secret_key: str | None,
        *,
        region: str = "auto",
        service: str = "s3",
        expires: int = 3600,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._access_key = access_key
        self._secret_key = secret_key
        self._region = region
        self._service = service
        self._expires = expires

    @classmethod
    def from_settings(cls, settings: OriginSettings) -> OriginSigner:
        return cls(
            settings.endpoint,
            settings.access_key,
            settings.secret_key,
            region=settings.region,
            service=settings.service,
            expires=settings.presign_expires,
        )

    def object_url(self, bucket: str, key: str) -> str:
        return f"{self._endpoint}/{bucket}/{quote_key(key)}"

    def sign(
        self,
        bucket: str | None,
        key: str,
        mode: SigningMode,
        *,
        now: datetime | None = None,
    ) -> SignedOriginRequest:
        """Sign a GET for ``<endpoint>/<bucket>/<key>``.

        Args:
            bucket: Bucket holding the object.
            key: Object key, unquoted.
            mode: Put the signature in the Authorization header or in the
                query string.
            now: Signing time. Identical inputs and ``now`` give identical
                output.

        Returns:
            A fresh SignedOriginRequest. Never reuse it across requests.

        Raises:
            SigningError: if the credentials or bucket are missing or
                malformed, or botocore refuses to sign.
        """
        if not _usable(self._access_key) or not _usable(self._secret_key):
            msg = "origin credentials are missing or malformed"
            raise SigningError(msg)
        if not _usable(bucket):
            msg = "origin bucket is not configured"
            raise SigningError(msg)

        timestamp = now or datetime.now(UTC)
        credentials = Credentials(self._access_key, self._secret_key)
        request = AWSRequest(method="GET", url=self.object_url(bucket, key))

        if mode is SigningMode.QUERY:
            signer = _QueryAuth(
                credentials,
                self._service,
                self._region,
                expires=self._expires,
                timestamp=timestamp,
            )
        else:
            signer = _HeaderAuth(
                credentials, self._service, self._region, timestamp=timestamp
            )

        try:
            signer.add_auth(request)
        except BotoCoreError as error:
            LOG.warning("signing failed for %s/%s: %s", bucket, key, error)
            raise SigningError(f"request signing failed: {error}") from error

        headers = {name: str(value) for name, value in request.headers.items()}
        return SignedOriginRequest(
            url=request.url,
            mode=mode,
            headers=headers,
            expires=self._expires if mode is SigningMode.QUERY else None,
        )
