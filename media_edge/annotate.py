from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from litestar.enums import MediaType
from litestar.response import Response, Stream

from .classify import MediaClass
from .policy import ImageDirective, NoDirective, cache_control_hint

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    import httpx

    from .errors import MediaEdgeError
    from .policy import CachePolicy, TransformationDirective
    from .signing import SigningMode

LOG = logging.getLogger("media_edge.annotate")

MAX_ERROR_DETAIL = 256

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


@dataclass(frozen=True)
class Decision:
    """What the pipeline decided for one request."""

    media_class: MediaClass
    directive: TransformationDirective = NoDirective()
    signing_mode: SigningMode | None = None
    cache_policy: CachePolicy | None = None

    def ttl_for(self, status: int) -> int | None:
        if self.cache_policy is None:
            return None
        return self.cache_policy.ttl_for(status)


def truncate(text: str, limit: int = MAX_ERROR_DETAIL) -> str:
    # Header values must stay on one line.
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."


def diagnostic_headers(decision: Decision, upstream_status: int | None) -> dict[str, str]:
    headers = {
        "X-Media-Class": decision.media_class.value,
        "X-Media-Transform": decision.directive.kind,
    }
    if isinstance(decision.directive, ImageDirective):
        headers["X-Requested-Format"] = decision.directive.format or "original"
    if decision.signing_mode is not None:
        headers["X-Signing-Mode"] = decision.signing_mode.value
    if upstream_status is not None:
        headers["X-Upstream-Status"] = str(upstream_status)
        ttl = decision.ttl_for(upstream_status)
        if ttl is not None:
            headers["X-Cache-TTL"] = str(ttl)
            headers["CDN-Cache-Control"] = cache_control_hint(ttl)
    return headers


def prepare_response_headers(headers: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key_bytes, value_bytes in headers:
        key = key_bytes.decode("latin-1")
        value = value_bytes.decode("latin-1")
        if key.lower() in HOP_BY_HOP:
            continue
        prepared[key] = value
    return prepared


def merge_headers(upstream: dict[str, str], extra: dict[str, str]) -> dict[str, str]:
    """Add ``extra`` to ``upstream`` without replacing any upstream header."""
    merged = dict(upstream)
    present = {name.lower() for name in merged}
    for name, value in extra.items():
        if name.lower() not in present:
            merged[name] = value
    return merged


def _add_vary_accept(headers: dict[str, str]) -> None:
    for name, value in headers.items():
        if name.lower() == "vary":
            tokens = {token.strip().lower() for token in value.split(",")}
            if "accept" not in tokens and "*" not in tokens:
                headers[name] = f"{value}, Accept"
            return
    headers["Vary"] = "Accept"


def annotate_stream(upstream: httpx.Response, decision: Decision | None) -> Stream:
    """Stream the upstream body unchanged, adding diagnostic headers only."""
    headers = prepare_response_headers(upstream.headers.raw)
    if decision is not None:
        headers = merge_headers(
            headers, diagnostic_headers(decision, upstream.status_code)
        )
        if decision.media_class is MediaClass.IMAGE:
            _add_vary_accept(headers)

    async def iterator() -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()

    return Stream(content=iterator(), status_code=upstream.status_code, headers=headers)


def annotate_failure(
    error: MediaEdgeError,
    decision: Decision | None = None,
    *,
    upstream_status: int | None = None,
) -> Response:
    headers: dict[str, str] = {}
    if decision is not None:
        headers.update(diagnostic_headers(decision, upstream_status))
    headers["X-Proxy-Error"] = truncate(error.detail)
    if error.status_code >= 500:
        headers.setdefault("CDN-Cache-Control", "no-store")
    LOG.debug("annotated failure status=%s detail=%s", error.status_code, error.detail)
    return Response(
        content=truncate(error.detail, limit=1024),
        status_code=error.status_code,
        headers=headers,
        media_type=MediaType.TEXT,
    )
