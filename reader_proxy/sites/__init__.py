from .registry import (
    DEFAULT_SITES,
    SiteEntry,
    SiteRegistry,
    build_site_registry,
    load_site_registry,
)

__all__ = [
    "DEFAULT_SITES",
    "SiteEntry",
    "SiteRegistry",
    "build_site_registry",
    "load_site_registry",
]
