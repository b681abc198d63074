import codecs
import json
import logging
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator

from reader_proxy.vars import SITES_FILE

logger = logging.getLogger("uvicorn.error")


class SiteEntry(BaseModel):
    """One proxied legacy site."""

    model_config = ConfigDict(frozen=True)

    prefix: str
    origin_host: str
    origin_path_prefix: str = ""
    encoding: str

    @field_validator("prefix")
    @classmethod
    def _single_segment(cls, value: str) -> str:
        value = value.strip("/")
        if not value or "/" in value:
            raise ValueError(f"prefix must be a single path segment, got {value!r}")
        return value

    @field_validator("origin_host")
    @classmethod
    def _lower_host(cls, value: str) -> str:
        if not value or "/" in value:
            raise ValueError(f"origin_host must be a bare hostname, got {value!r}")
        return value.lower()

    @field_validator("origin_path_prefix")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        return value.strip("/")

    @field_validator("encoding")
    @classmethod
    def _known_codec(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as e:
            raise ValueError(f"unknown encoding {value!r}") from e
        return value

    @property
    def origin_base(self) -> str:
        """Origin URL up to and including the path prefix, always ending in '/'."""
        if self.origin_path_prefix:
            return f"http://{self.origin_host}/{self.origin_path_prefix}/"
        return f"http://{self.origin_host}/"

    def origin_url(self, path: str = "", query: str = "") -> str:
        url = self.origin_base + path.lstrip("/")
        if query:
            url = f"{url}?{query}"
        return url


DEFAULT_SITES = (
    SiteEntry(
        prefix="st",
        origin_host="salafitalk.net",
        origin_path_prefix="st",
        encoding="iso-8859-1",
    ),
    SiteEntry(
        prefix="sm",
        origin_host="sahihmuslim.com",
        origin_path_prefix="sps/smm",
        encoding="windows-1256",
    ),
    SiteEntry(
        prefix="sc",
        origin_host="salafitalk.com",
        origin_path_prefix="",
        encoding="iso-8859-1",
    ),
)


class SiteRegistry:
    """
    Read-only lookup table of proxied sites, keyed by prefix and by origin host.
    Built once at startup and shared by every request.
    """

    def __init__(self, sites):
        by_prefix: Dict[str, SiteEntry] = {}
        by_host: Dict[str, SiteEntry] = {}
        for site in sites:
            if site.prefix in by_prefix:
                raise ValueError(f"Duplicate site prefix: {site.prefix}")
            if site.origin_host in by_host:
                raise ValueError(f"Duplicate origin host: {site.origin_host}")
            by_prefix[site.prefix] = site
            by_host[site.origin_host] = site
        self._sites = tuple(by_prefix.values())
        self._by_prefix = by_prefix
        self._by_host = by_host

    def resolve(self, prefix: Optional[str]) -> Optional[SiteEntry]:
        if not prefix:
            return None
        return self._by_prefix.get(prefix)

    def for_host(self, host: Optional[str]) -> Optional[SiteEntry]:
        if not host:
            return None
        return self._by_host.get(host.lower())

    @property
    def hosts(self) -> frozenset:
        return frozenset(self._by_host)

    def __iter__(self) -> Iterator[SiteEntry]:
        return iter(self._sites)

    def __len__(self) -> int:
        return len(self._sites)

    def __contains__(self, prefix) -> bool:
        return prefix in self._by_prefix


_SITE_LIST = TypeAdapter(List[SiteEntry])


def load_site_registry(path: str) -> SiteRegistry:
    """Load a site table from a JSON file holding a list of site objects."""
    with open(path, "r", encoding="utf-8") as fh:
        raw = json.load(fh)
    return SiteRegistry(_SITE_LIST.validate_python(raw))


def build_site_registry(path: Optional[str] = None) -> SiteRegistry:
    path = SITES_FILE if path is None else path
    if path:
        registry = load_site_registry(path)
        logger.info(f"Loaded {len(registry)} sites from {path}")
    else:
        registry = SiteRegistry(DEFAULT_SITES)
        logger.info(f"Using built-in site table with {len(registry)} sites")
    for site in registry:
        logger.info(
            f"  /{site.prefix}/ -> {site.origin_base} ({site.encoding})"
        )
    return registry
