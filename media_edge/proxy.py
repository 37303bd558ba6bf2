from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from litestar.enums import MediaType
from litestar.response import Response

from .annotate import HOP_BY_HOP, Decision, annotate_failure, annotate_stream, truncate
from .classify import ContentClassifier, MediaClass, is_passthrough
from .errors import (
    EmptyKeyError,
    MediaEdgeError,
    TransformationBackendError,
    UpstreamFetchError,
)
from .keys import extract_key
from .policy import (
    ImageDirective,
    VideoDirective,
    cache_policy_for,
    select_directive,
    signing_mode_for,
)
from .settings import (
    CacheSettings,
    OriginSettings,
    TransformSettings,
    load_cache_settings_from_env,
    load_origin_settings_from_env,
    load_transform_settings_from_env,
)
from .signing import OriginSigner

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar import Request

    from .policy import TransformationDirective
    from .signing import SignedOriginRequest
else:  # pragma: no cover
    Mapping = Any

LOG = logging.getLogger("media_edge.proxy")

# Client headers that may ride along on a direct origin fetch. They are added
# after signing, so they are not part of the signature.
FORWARDED_ORIGIN_HEADERS = ("range", "if-none-match", "if-modified-since")


def _ascii_header(request: Request, name: str) -> str | None:
    """Return a client header value only if it can go out on the wire as ASCII."""
    value = request.headers.get(name)
    if value and not value.isascii():
        LOG.debug("dropping non-ascii %s header", name)
        return None
    return value


class Stage(str, Enum):
    START = "start"
    KEY_EXTRACTED = "key-extracted"
    CLASSIFIED = "classified"
    SIGNED = "signed"
    TRANSFORM_SELECTED = "transform-selected"
    FETCHED = "fetched"
    ANNOTATED = "annotated"
    DONE = "done"
    ERROR = "error"


class PipelineTrace:
    """Stages one request has passed through, logged at each checkpoint."""

    def __init__(self, path: str):
        self.path = path
        self.stages: list[Stage] = [Stage.START]

    @property
    def stage(self) -> Stage:
        return self.stages[-1]

    def advance(self, stage: Stage, **fields: object) -> None:
        if stage in self.stages:
            msg = f"pipeline stage {stage.value} revisited for {self.path}"
            raise RuntimeError(msg)
        self.stages.append(stage)
        details = "".join(f" {name}={value}" for name, value in fields.items())
        LOG.debug("pipeline path=%s stage=%s%s", self.path, stage.value, details)


class MediaEdgeProxy:
    def __init__(
        self,
        origin: OriginSettings,
        transform: TransformSettings,
        cache: CacheSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._origin_settings = origin
        self._transform_settings = transform
        self._cache_settings = cache
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._signer = OriginSigner.from_settings(origin)
        self._classifier = ContentClassifier(transform.video_extensions)

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, read=300.0),
            trust_env=False,
            transport=self._transport,
        )
        LOG.info(
            "media edge ready (origin=%s, bucket=%s, transforms=%s)",
            self._origin_settings.endpoint,
            self._origin_settings.bucket or "unset",
            self._transform_settings.public_base_url or "request host",
        )

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        trace = PipelineTrace(path)
        if is_passthrough(path, self._transform_settings.passthrough_prefix):
            return await self._passthrough(request, path, trace)

        if request.method != "GET":
            return Response(
                content="Method Not Allowed",
                status_code=405,
                headers={"Allow": "GET"},
                media_type=MediaType.TEXT,
            )

        decision: Decision | None = None
        upstream_status: int | None = None
        try:
            key = extract_key(path)
            trace.advance(Stage.KEY_EXTRACTED, key=key)

            media_class = self._classifier.classify(key)
            mode = signing_mode_for(media_class)
            decision = Decision(
                media_class=media_class,
                signing_mode=mode,
                cache_policy=cache_policy_for(media_class, self._cache_settings),
            )
            trace.advance(Stage.CLASSIFIED, media_class=media_class.value)

            signed = self._signer.sign(self._origin_settings.bucket, key, mode)
            trace.advance(Stage.SIGNED, mode=mode.value)

            directive = select_directive(
                media_class, request.headers.get("accept"), self._transform_settings
            )
            decision = replace(decision, directive=directive)
            trace.advance(
                Stage.TRANSFORM_SELECTED, directive=directive.options() or "none"
            )

            outgoing = self._build_outgoing_request(request, signed, directive)
            response = await self._send(outgoing)
            upstream_status = response.status_code
            trace.advance(Stage.FETCHED, status=upstream_status)

            if isinstance(directive, VideoDirective) and not response.is_success:
                body = await response.aread()
                await response.aclose()
                raise TransformationBackendError(
                    response.status_code,
                    truncate(body.decode("utf-8", errors="replace")),
                )
        except MediaEdgeError as error:
            return self._fail(trace, error, decision, upstream_status)
        except Exception:
            LOG.exception("unexpected failure handling %s", path)
            error = MediaEdgeError("internal proxy error")
            return self._fail(trace, error, decision, upstream_status)

        result = annotate_stream(response, decision)
        trace.advance(Stage.ANNOTATED)
        trace.advance(Stage.DONE, status=upstream_status)
        return result

    def _fail(
        self,
        trace: PipelineTrace,
        error: MediaEdgeError,
        decision: Decision | None,
        upstream_status: int | None,
    ) -> Response:
        trace.advance(Stage.ERROR, status=error.status_code)
        if isinstance(error, EmptyKeyError):
            LOG.debug("rejecting %s: %s", trace.path, error.detail)
        else:
            LOG.warning(
                "request for %s failed with %s: %s",
                trace.path,
                error.status_code,
                error.detail,
            )
        return annotate_failure(error, decision, upstream_status=upstream_status)

    def _transform_base_url(self, request: Request) -> str:
        configured = self._transform_settings.public_base_url
        if configured:
            return configured.rstrip("/")
        return f"{request.url.scheme}://{request.url.netloc}"

    def _build_outgoing_request(
        self,
        request: Request,
        signed: SignedOriginRequest,
        directive: TransformationDirective,
    ) -> httpx.Request:
        assert self._http_client is not None
        settings = self._transform_settings
        accept = _ascii_header(request, "accept")

        if isinstance(directive, VideoDirective):
            url = (
                f"{self._transform_base_url(request)}{settings.video_path}/"
                f"{directive.options()}/{quote(signed.url, safe='')}"
            )
            headers = {"accept": accept} if accept else {}
            return self._http_client.build_request("GET", url, headers=headers)

        if isinstance(directive, ImageDirective) and settings.image_enabled:
            # The backend replays the signed headers against the origin.
            url = (
                f"{self._transform_base_url(request)}{settings.image_path}/"
                f"{directive.options()}/{quote(signed.url, safe='')}"
            )
            headers = dict(signed.headers)
            if accept:
                headers["accept"] = accept
            return self._http_client.build_request("GET", url, headers=headers)

        headers = dict(signed.headers)
        for name in FORWARDED_ORIGIN_HEADERS:
            value = _ascii_header(request, name)
            if value:
                headers[name] = value
        return self._http_client.build_request(signed.method, signed.url, headers=headers)

    async def _send(self, outgoing: httpx.Request) -> httpx.Response:
        if self._http_client is None:
            message = "proxy not initialised"
            raise RuntimeError(message)
        try:
            return await self._http_client.send(outgoing, stream=True)
        except httpx.HTTPError as error:
            LOG.warning("fetch %s %s failed: %r", outgoing.method, outgoing.url.host, error)
            detail = f"upstream fetch failed: {type(error).__name__}: {error}"
            raise UpstreamFetchError(detail) from error

    async def _passthrough(
        self, request: Request, path: str, trace: PipelineTrace
    ) -> Response:
        decision = Decision(media_class=MediaClass.PASSTHROUGH)
        try:
            outgoing = await self._build_passthrough_request(request, path)
            response = await self._send(outgoing)
        except MediaEdgeError as error:
            return self._fail(trace, error, decision, None)
        except Exception:
            LOG.exception("unexpected failure forwarding %s", path)
            error = MediaEdgeError("internal proxy error")
            return self._fail(trace, error, decision, None)
        trace.advance(Stage.FETCHED, status=response.status_code)
        result = annotate_stream(response, decision)
        trace.advance(Stage.ANNOTATED)
        trace.advance(Stage.DONE, status=response.status_code)
        return result

    async def _build_passthrough_request(
        self, request: Request, path: str
    ) -> httpx.Request:
        if self._http_client is None:
            message = "proxy not initialised"
            raise RuntimeError(message)
        url = f"{self._transform_settings.backend_url.rstrip('/')}{path}"
        if request.scope.get("query_string"):
            query = request.scope["query_string"].decode("latin-1")
            url = f"{url}?{query}"

        headers = self._prepare_outgoing_headers(request.headers)
        content = None
        if request.method in {"POST", "PUT", "PATCH"}:
            content = await self._build_content_bytes(request)

        return self._http_client.build_request(
            method=request.method,
            url=url,
            headers=headers,
            content=content,
        )

    def _prepare_outgoing_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        prepared: dict[str, str] = {}
        for key, value in headers.items():
            lowered = key.lower()
            if lowered in HOP_BY_HOP:
                continue
            prepared[lowered if lowered == "host" else key] = value
        return prepared

    async def _build_content_bytes(self, request: Request) -> bytes:
        """Read the entire request body as bytes directly from ASGI scope."""
        body_parts = []
        receive = request.receive

        while True:
            message = await receive()
            if message["type"] == "http.request":
                body = message.get("body", b"")
                if body:
                    body_parts.append(body)
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                break

        return b"".join(body_parts)

    @classmethod
    def from_env(cls) -> MediaEdgeProxy:
        """Create a MediaEdgeProxy instance from environment variables.

        Returns:
            MediaEdgeProxy configured from environment variables.
        """
        return cls(
            origin=load_origin_settings_from_env(),
            transform=load_transform_settings_from_env(),
            cache=load_cache_settings_from_env(),
        )
