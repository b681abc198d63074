# Make `import reader_proxy` work when the tests run from a plain checkout.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)


@pytest.fixture
def registry():
    """The built-in site table (st, sm, sc)."""
    from reader_proxy.sites import DEFAULT_SITES, SiteRegistry

    return SiteRegistry(DEFAULT_SITES)


@pytest.fixture
def site_st(registry):
    return registry.resolve("st")


@pytest.fixture
def site_sm(registry):
    return registry.resolve("sm")


@pytest.fixture
def site_sc(registry):
    return registry.resolve("sc")
