from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from reader_proxy.app_proxy.route import get_site_registry, router as app_proxy_router
from reader_proxy.home import render_home_page
from reader_proxy.sites import SiteRegistry

router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def home(registry: SiteRegistry = Depends(get_site_registry)):
    return HTMLResponse(render_home_page(registry))


# Registered last: the proxy route matches every path
router.include_router(app_proxy_router)
