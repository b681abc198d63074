import logging
from typing import AsyncIterator, Union
from urllib.parse import urlsplit

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from reader_proxy.app_proxy.errors import (
    DecodeFailure,
    ForbiddenOriginFailure,
    OriginTransportFailure,
    ProxyFailure,
)
from reader_proxy.app_proxy.html_rewriter import rewrite_html
from reader_proxy.app_proxy.translator import (
    OutboundRequest,
    ProxyRequest,
    filter_response_headers,
    is_redirect,
    rewrite_location_header,
    split_path,
    translate,
)
from reader_proxy.sites import SiteEntry, SiteRegistry
from reader_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from reader_proxy.utils.traced_requests import traced_request
from reader_proxy.vars import PROXY_TIMEOUT

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# The HTML body is decoded and re-encoded, so these no longer describe it
HTML_REPLACED_HEADERS = ("content-type", "content-encoding")

GENERIC_FAILURE_MESSAGE = "Proxy request failed"

# Every request method with a resource target, WebDAV and cache purges included.
# CONNECT is a tunnel request, not a resource on an origin site.
PROXY_METHODS = (
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "PATCH",
    "OPTIONS",
    "TRACE",
    "PROPFIND",
    "PROPPATCH",
    "MKCOL",
    "COPY",
    "MOVE",
    "LOCK",
    "UNLOCK",
    "REPORT",
    "SEARCH",
    "PURGE",
)


def get_site_registry(request: Request) -> SiteRegistry:
    return request.app.state.site_registry


def create_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=False,  # Redirects are rewritten, never followed
    )


def is_html(content_type: str) -> bool:
    return "text/html" in (content_type or "").lower()


def failure_response(failure: ProxyFailure) -> Response:
    return PlainTextResponse(
        failure.message or GENERIC_FAILURE_MESSAGE, status_code=failure.status_code
    )


def exception_response(exception: Exception) -> Response:
    """Last-resort mapping for exceptions no step turned into a failure value."""
    status_code = getattr(exception, "status_code", None)
    if not isinstance(status_code, int):
        status_code = 500
    message = format_exception_message(exception)
    return PlainTextResponse(message or GENERIC_FAILURE_MESSAGE, status_code=status_code)


async def fetch_upstream(
    outbound: OutboundRequest, registry: SiteRegistry, client: httpx.AsyncClient
) -> Union[httpx.Response, ProxyFailure]:
    """Send the outbound request without reading its body."""
    host = urlsplit(outbound.url).hostname
    if host not in registry.hosts:
        return ForbiddenOriginFailure(f"Refusing to contact unconfigured host: {host}")

    request = client.build_request(
        outbound.method,
        outbound.url,
        headers=outbound.headers,
        content=outbound.body,
    )
    try:
        return await client.send(request, stream=True)
    except httpx.HTTPError as e:
        log_exception_with_details(logger, f"[Proxy] {outbound.url}", e)
        message = format_exception_message(e) or f"{type(e).__name__} for {outbound.url}"
        # HTTPStatusError carries the origin's status; keep it visible to clients
        status_code = getattr(getattr(e, "response", None), "status_code", None)
        if isinstance(status_code, int):
            return OriginTransportFailure(message, status_code=status_code)
        return OriginTransportFailure(message)


def decode_html(content: bytes, site: SiteEntry) -> Union[str, DecodeFailure]:
    try:
        return content.decode(site.encoding)
    except (UnicodeDecodeError, LookupError) as e:
        return DecodeFailure(
            f"Failed to decode response from {site.origin_host} as {site.encoding}: {e}"
        )


def relay_headers(upstream: httpx.Response, site: SiteEntry, drop=()) -> list:
    headers = filter_response_headers(upstream.headers.multi_items(), drop)
    if not is_redirect(upstream.status_code):
        return headers
    relayed = []
    for name, value in headers:
        if name.lower() == "location":
            rewritten = rewrite_location_header(value, site)
            if rewritten != value:
                logger.debug(f"[Proxy] Location {value} -> {rewritten}")
            value = rewritten
        relayed.append((name, value))
    return relayed


def _with_headers(response: Response, headers: list) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    return response


async def close_upstream(upstream: httpx.Response, client: httpx.AsyncClient) -> None:
    await upstream.aclose()
    await client.aclose()


async def stream_upstream(
    upstream: httpx.Response, client: httpx.AsyncClient
) -> AsyncIterator[bytes]:
    """
    Relay the origin body exactly as received. The upstream connection is
    closed when the body ends or the client goes away.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await close_upstream(upstream, client)


async def relay_response(
    outbound: OutboundRequest,
    upstream: httpx.Response,
    registry: SiteRegistry,
    client: httpx.AsyncClient,
) -> Union[Response, DecodeFailure]:
    site = outbound.site
    content_type = upstream.headers.get("content-type", "")

    if not is_html(content_type):
        logger.debug(f"[Proxy] Streaming {content_type or 'untyped'} body from {outbound.url}")
        return _with_headers(
            StreamingResponse(
                stream_upstream(upstream, client),
                status_code=upstream.status_code,
                # Covers a disconnect before the first chunk is pulled
                background=BackgroundTask(close_upstream, upstream, client),
            ),
            relay_headers(upstream, site),
        )

    try:
        content = await upstream.aread()
    finally:
        await close_upstream(upstream, client)

    text = decode_html(content, site)
    if isinstance(text, DecodeFailure):
        return text

    return _with_headers(
        HTMLResponse(rewrite_html(text, site, registry), status_code=upstream.status_code),
        relay_headers(upstream, site, drop=HTML_REPLACED_HEADERS),
    )


def inbound_path(request: Request) -> str:
    """
    The request path exactly as the client sent it. Escapes such as %3F, %2F
    and Latin-1 %E9 must reach the origin untouched, so the decoded
    request.url.path is only used when the server gives no raw_path.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return request.url.path


def inbound_body(request: Request, method: str) -> Union[bytes, AsyncIterator[bytes]]:
    """Stream the client body through, unless there is none to send."""
    if method == "GET":
        return b""
    if "content-length" not in request.headers and "transfer-encoding" not in request.headers:
        return b""
    return request.stream()


def _report(span, failure: ProxyFailure) -> Response:
    span.set_attribute("proxy.error", failure.kind)
    span.set_attribute("proxy.status_code", failure.status_code)
    return failure_response(failure)


async def forward_to_target(request: Request, registry: SiteRegistry) -> Response:
    """
    Proxy one inbound request to the origin site named by its first path
    segment:
    - unknown or missing prefix -> 404, nothing is sent upstream
    - redirects are returned to the client with Location rewritten
    - HTML is decoded from the site's encoding, link-rewritten and served as UTF-8
    - everything else is streamed through untouched
    """
    method = request.method.upper()
    path = inbound_path(request)
    parts = split_path(path)
    with traced_request(
        tracer,
        operation="proxy_request",
        method=method,
        site_prefix=parts[0] if parts else None,
        start_message=f"[Proxy] {method} {path}",
    ) as span:
        try:
            proxy_request = ProxyRequest(
                method=method,
                path=path,
                query=str(request.url.query),
                headers=request.headers,
                body=inbound_body(request, method),
            )
            outbound = translate(proxy_request, registry)
            if isinstance(outbound, ProxyFailure):
                logger.warning(f"[Proxy] {outbound.message} ({path})")
                return _report(span, outbound)

            span.set_attribute("proxy.target_url", outbound.url)
            logger.debug(f"[Proxy] {method} {path} -> {outbound.url}")

            client = create_client()
            try:
                upstream = await fetch_upstream(outbound, registry, client)
            except BaseException:
                await client.aclose()
                raise
            if isinstance(upstream, ProxyFailure):
                await client.aclose()
                logger.error(f"[Proxy] {upstream.kind}: {upstream.message}")
                return _report(span, upstream)

            span.set_attribute("proxy.status_code", upstream.status_code)
            try:
                response = await relay_response(outbound, upstream, registry, client)
            except BaseException:
                await close_upstream(upstream, client)
                raise
            if isinstance(response, ProxyFailure):
                logger.error(f"[Proxy] {response.kind}: {response.message}")
                return _report(span, response)
            return response

        except Exception as e:
            log_exception_with_details(logger, "[Proxy]", e)
            span.set_attribute("proxy.error", str(e))
            return exception_response(e)


@router.api_route(
    "/{path:path}",
    methods=list(PROXY_METHODS),
)
async def proxy_all(
    request: Request, path: str, registry: SiteRegistry = Depends(get_site_registry)
):
    """Catch-all route that proxies /{prefix}/... to the matching origin site."""
    return await forward_to_target(request, registry)
