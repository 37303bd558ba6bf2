from __future__ import annotations

import os
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, cast

import httpx
import pytest
from litestar import Request
from litestar.types import HTTPScope

from media_edge import CacheSettings, MediaEdgeProxy, OriginSettings, TransformSettings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator

    from botocore.client import BaseClient
    from litestar.response import Response
    from pytest_databases._service import DockerService


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


@pytest.fixture(scope="session")
def minio_service_name() -> str:
    return "minio-media-edge"


@pytest.fixture(scope="session")
def minio_service(
    docker_service: DockerService,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
    minio_service_name: str,
) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request as UrlRequest
    from urllib.request import urlopen

    from pytest_databases.types import ServiceContainer

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        if not url.startswith(("http:", "https:")):
            msg = "URL must start with 'http:' or 'https:'"
            raise ValueError(msg)
        try:
            with urlopen(url=UrlRequest(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    env = {
        "MINIO_ROOT_USER": minio_access_key,
        "MINIO_ROOT_PASSWORD": minio_secret_key,
    }

    with docker_service.run(
        image="quay.io/minio/minio",
        name=minio_service_name,
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env=env,
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


@pytest.fixture
def minio_s3_client(minio_service: MinioService) -> BaseClient:
    """Create a boto3 S3 client used to seed objects into MinIO."""
    import boto3
    from botocore.config import Config

    scheme = "https" if minio_service.secure else "http"
    return boto3.client(
        "s3",
        endpoint_url=f"{scheme}://{minio_service.endpoint}",
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )


@pytest.fixture
def origin_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for the origin store."""
    env_vars = {
        "GCS_HMAC_ACCESS_KEY_ID": "GOOG1ENVEXAMPLE",
        "GCS_HMAC_SECRET_ACCESS_KEY": "env-secret",
        "GCS_BUCKET": "env-media",
        "MEDIA_EDGE_ORIGIN_ENDPOINT": "https://origin.env.test",
    }

    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@dataclass
class FakeUpstream:
    """Records outgoing requests and answers them with canned responses."""

    handler: Callable[[httpx.Request], httpx.Response] | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            response = httpx.Response(
                200, headers={"content-type": "image/png"}, content=b"payload"
            )
        else:
            response = self.handler(request)
        return _streamed(response)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class _ByteStream(httpx.AsyncByteStream):
    """Async body stream that has not been read yet, like a real transport's."""

    def __init__(self, body: bytes):
        self._body = body

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._body


def _streamed(response: httpx.Response) -> httpx.Response:
    """Re-wrap a canned response so its body is streamed rather than pre-read."""
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=_ByteStream(response.content),
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def origin_settings() -> OriginSettings:
    return OriginSettings(
        endpoint="https://storage.example.com",
        access_key="GOOG1EXAMPLE",
        secret_key="example-secret",
        bucket="media",
    )


@pytest.fixture
def transform_settings() -> TransformSettings:
    return TransformSettings(
        public_base_url="https://edge.test",
        backend_url="http://transform.internal:8081",
    )


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings()


@pytest.fixture
async def proxy(
    origin_settings: OriginSettings,
    transform_settings: TransformSettings,
    cache_settings: CacheSettings,
    upstream: FakeUpstream,
) -> AsyncGenerator[MediaEdgeProxy]:
    proxy = MediaEdgeProxy(
        origin_settings,
        transform_settings,
        cache_settings,
        transport=httpx.MockTransport(upstream),
    )
    await proxy.startup()
    yield proxy
    await proxy.shutdown()


def make_request(
    path: str,
    headers: dict[str, str] | None = None,
    *,
    method: str = "GET",
    query: bytes = b"",
    body: bytes = b"",
) -> Request:
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    scope = cast(
        HTTPScope,
        {
            "type": "http",
            "method": method,
            "scheme": "https",
            "server": ("edge.test", 443),
            "root_path": "",
            "path": path,
            "query_string": query,
            "headers": raw_headers,
            "state": {},
        },
    )

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope=scope, receive=receive)


async def read_body(response: Response) -> bytes:
    iterator_attr = getattr(response, "iterator", None)
    if iterator_attr is None:
        content = response.content
        return content.encode() if isinstance(content, str) else content
    if callable(iterator_attr):
        iterator_attr = iterator_attr()
    chunks = []
    async for chunk in cast(AsyncIterator[bytes], iterator_attr):
        chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode())
    return b"".join(chunks)


@pytest.fixture
def request_factory() -> Callable[..., Request]:
    return make_request


@pytest.fixture
def body_reader() -> Callable[[Response], Awaitable[bytes]]:
    return read_body
