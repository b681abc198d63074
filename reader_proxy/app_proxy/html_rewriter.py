"""
Link rewriting for HTML served by the proxied sites.

Every ``href``/``src`` attribute is rewritten so the browser's next request
comes back through the proxy. The rules run in a fixed order; each rule only
produces values that the later rules leave alone, so running the whole
pipeline twice gives the same result as running it once.

Only ``href`` and ``src`` are touched. ``action``, ``srcset``, CSS ``url()``
and URLs built by scripts are passed through as-is.
"""

import re
from functools import lru_cache
from typing import Callable, Tuple

from reader_proxy.sites import SiteEntry, SiteRegistry

UTF8_META_TAG = '<meta charset="utf-8">'

# Attribute name and opening quote; the quote is captured so it can be kept.
# data-src, xlink:href and the like are other attributes.
_ATTR = r"(?<![\w:-])(?P<attr>(?i:href|src))\s*=\s*(?P<q>[\"'])"

_UTF8_META_RE = re.compile(r'<meta charset="utf-8"', re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)
_ABSOLUTE_RE = re.compile(
    _ATTR + r"(?i:https?)://(?P<host>[^/\"'\s]+)/(?P<rest>[^\"']*)"
)


@lru_cache(maxsize=None)
def _same_site_re(site: SiteEntry) -> re.Pattern:
    return re.compile(_ATTR + "/" + re.escape(site.origin_path_prefix) + "/")


@lru_cache(maxsize=None)
def _root_relative_re(prefixes: Tuple[str, ...]) -> re.Pattern:
    # Protocol-relative '//host' and values already under any site prefix are skipped
    alternatives = "|".join(re.escape(prefix) for prefix in prefixes)
    return re.compile(
        _ATTR + r"/(?!/|(?:" + alternatives + r")(?:[/?#\"']))"
    )


_RELATIVE_RE = re.compile(
    _ATTR + r"(?!(?i:[a-z][a-z0-9+.\-]*):|/|#|(?P=q))"
)


def _attr_prefix(match: re.Match) -> str:
    return f"{match.group('attr')}={match.group('q')}"


def insert_charset_meta(html: str, site: SiteEntry, registry: SiteRegistry) -> str:
    """Declare UTF-8 in <head> unless the page already does."""
    if _UTF8_META_RE.search(html):
        return html
    return _HEAD_CLOSE_RE.sub(
        lambda m: f"{UTF8_META_TAG}\n{m.group(0)}", html, count=1
    )


def rewrite_absolute_urls(html: str, site: SiteEntry, registry: SiteRegistry) -> str:
    """
    http(s)://{host}/{path prefix}/... -> /{prefix}/... for every configured
    site, not only the one serving the page.
    """

    def _replace(match: re.Match) -> str:
        target = registry.for_host(match.group("host"))
        if target is None:
            return match.group(0)
        rest = match.group("rest")
        if target.origin_path_prefix:
            lead = target.origin_path_prefix + "/"
            if not rest.startswith(lead):
                return match.group(0)
            rest = rest[len(lead):]
        return f"{_attr_prefix(match)}/{target.prefix}/{rest}"

    return _ABSOLUTE_RE.sub(_replace, html)


def rewrite_same_site_paths(html: str, site: SiteEntry, registry: SiteRegistry) -> str:
    """/{path prefix}/... -> /{prefix}/... for the site serving the page."""
    if not site.origin_path_prefix:
        return html
    return _same_site_re(site).sub(
        lambda m: f"{_attr_prefix(m)}/{site.prefix}/", html
    )


def rewrite_root_relative_paths(
    html: str, site: SiteEntry, registry: SiteRegistry
) -> str:
    """
    /anything -> /{prefix}/anything. Values already under a site prefix are
    kept, including links the absolute rule pointed at another site.
    """
    prefixes = tuple(sorted({entry.prefix for entry in registry} | {site.prefix}))
    return _root_relative_re(prefixes).sub(
        lambda m: f"{_attr_prefix(m)}/{site.prefix}/", html
    )


def rewrite_relative_paths(html: str, site: SiteEntry, registry: SiteRegistry) -> str:
    """page.html -> /{prefix}/page.html. Absolute, scheme and fragment values are kept."""
    return _RELATIVE_RE.sub(lambda m: f"{_attr_prefix(m)}/{site.prefix}/", html)


RewriteRule = Callable[[str, SiteEntry, SiteRegistry], str]

REWRITE_PIPELINE: Tuple[RewriteRule, ...] = (
    insert_charset_meta,
    rewrite_absolute_urls,
    rewrite_same_site_paths,
    rewrite_root_relative_paths,
    rewrite_relative_paths,
)


def rewrite_html(html: str, site: SiteEntry, registry: SiteRegistry) -> str:
    for rule in REWRITE_PIPELINE:
        html = rule(html, site, registry)
    return html
