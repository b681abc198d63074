import re
from dataclasses import dataclass, field
from typing import AsyncIterable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

from reader_proxy.app_proxy.errors import ResolutionFailure
from reader_proxy.sites import SiteEntry, SiteRegistry

# Never copied between client and origin, in either direction
FORBIDDEN_HEADERS = frozenset(
    {
        "host",
        "connection",
        "content-length",
        "transfer-encoding",
        "keep-alive",
        "upgrade",
        "expect",
        "proxy-connection",
    }
)

# Methods that get an explicit Origin header matching the origin host
ORIGIN_METHODS = frozenset({"POST", "PUT", "DELETE"})


@dataclass
class ProxyRequest:
    """The parts of an inbound request the translator needs."""

    method: str
    path: str  # as received, still percent-encoded
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Union[bytes, AsyncIterable[bytes]] = b""


@dataclass
class OutboundRequest:
    site: SiteEntry
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[Union[bytes, AsyncIterable[bytes]]] = None


def split_path(path: str) -> List[str]:
    return [part for part in path.split("/") if part]


def translate(
    request: ProxyRequest, registry: SiteRegistry
) -> Union[OutboundRequest, ResolutionFailure]:
    """Map /{prefix}/{rest...} onto the origin site registered under prefix."""
    parts = split_path(request.path)
    if not parts:
        return ResolutionFailure("No site prefix in request path")

    site = registry.resolve(parts[0])
    if site is None:
        return ResolutionFailure(f"Unknown site prefix: {parts[0]}")

    method = request.method.upper()
    return OutboundRequest(
        site=site,
        method=method,
        url=site.origin_url("/".join(parts[1:]), request.query),
        headers=prepare_headers(request, site, registry),
        body=None if method == "GET" else request.body,
    )


def prepare_headers(
    request: ProxyRequest, site: SiteEntry, registry: SiteRegistry
) -> Dict[str, str]:
    """
    Copy inbound headers for the origin request.
    Drops the forbidden set, referer and sec-fetch-* and pins host, referer
    and (for state-changing methods) origin to the origin site.
    """
    headers = {}
    referer = None
    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower == "referer":
            referer = value
            continue
        if name_lower in FORBIDDEN_HEADERS or name_lower.startswith("sec-fetch"):
            continue
        headers[name_lower] = value

    headers["host"] = site.origin_host
    headers["referer"] = reconstruct_referer(referer, site, registry)

    if request.method.upper() in ORIGIN_METHODS:
        headers["origin"] = f"http://{site.origin_host}"

    return headers


def reconstruct_referer(
    referer: Optional[str], site: SiteEntry, registry: SiteRegistry
) -> str:
    """
    Turn a referer inside the proxy's URL space back into the origin URL it
    stands for. The referer's own prefix decides the origin site, which may
    differ from the site being requested.
    """
    if not referer:
        return site.origin_base

    parsed = urlsplit(referer)
    parts = split_path(parsed.path)
    referer_site = registry.resolve(parts[0]) if parts else None
    if referer_site is None:
        return site.origin_base

    return referer_site.origin_url("/".join(parts[1:]), parsed.query)


def is_redirect(status_code: int) -> bool:
    return 300 <= status_code < 400


def rewrite_location_header(location: str, site: SiteEntry) -> str:
    """
    http(s)://{host}/{path prefix}/... -> /{prefix}/... so the client's next
    request re-enters the proxy. Any other location is returned unchanged.
    """
    if not location:
        return location
    pattern = r"^(?i:https?://" + re.escape(site.origin_host) + ")"
    if site.origin_path_prefix:
        pattern += "/" + re.escape(site.origin_path_prefix)
    pattern += "/"
    return re.sub(pattern, lambda m: f"/{site.prefix}/", location, count=1)


def filter_response_headers(
    headers: Iterable[Tuple[str, str]], drop: Iterable[str] = ()
) -> List[Tuple[str, str]]:
    """
    Origin response headers minus the forbidden set and any extra names in
    drop. Takes (name, value) pairs so repeated headers such as set-cookie
    survive.
    """
    excluded = FORBIDDEN_HEADERS.union(name.lower() for name in drop)
    return [
        (name, value) for name, value in headers if name.lower() not in excluded
    ]
