import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "reader-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

# Seconds to wait on an origin before giving up on the request
PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))

# Optional JSON file replacing the built-in site table
SITES_FILE = os.environ.get("SITES_FILE", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
