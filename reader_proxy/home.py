import html

from reader_proxy.sites import SiteRegistry

HOME_TITLE = "Islamic Sites Reader"

_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <title>{title}</title>
    <meta charset="utf-8">
    <style>
      body {{
        font-family: system-ui, -apple-system, sans-serif;
        max-width: 800px;
        margin: 2rem auto;
        padding: 0 1rem;
        line-height: 1.5;
      }}
      .site-list {{ display: grid; gap: 1rem; margin-top: 2rem; }}
      .site-link {{
        padding: 1rem;
        border: 1px solid #ddd;
        border-radius: 0.5rem;
        text-decoration: none;
        color: inherit;
        transition: all 0.2s ease;
      }}
      .site-link:hover {{
        background: #f5f5f5;
        transform: translateY(-1px);
        box-shadow: 0 2px 4px rgba(0,0,0,0.1);
      }}
      .site-name {{ margin: 0; font-size: 1.25rem; color: #2563eb; }}
    </style>
  </head>
  <body>
    <h1>{title}</h1>
    <p>Select a site to read with proper Arabic text encoding:</p>
    <div class="site-list">
{links}
    </div>
  </body>
</html>
"""

_LINK = """      <a href="/{prefix}/" class="site-link">
        <h2 class="site-name">{host}</h2>
      </a>"""


def render_home_page(registry: SiteRegistry) -> str:
    """Landing page linking to /{prefix}/ for every configured site."""
    links = "\n".join(
        _LINK.format(
            prefix=html.escape(site.prefix, quote=True),
            host=html.escape(site.origin_host),
        )
        for site in registry
    )
    return _PAGE.format(title=HOME_TITLE, links=links)
