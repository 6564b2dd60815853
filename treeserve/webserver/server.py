"""
ASGI applications served by the listeners.

create_app builds the content application (static files, plus the sync
endpoint when one is attached). create_redirect_app builds the plain-HTTP
application that only redirects to the TLS listener.
"""

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from treeserve.core.logging_config import get_logger

logger = get_logger(__name__)


def create_app(static_dir: str) -> FastAPI:
    """
    Factory function to create the content app for a static dir.

    Generated docs routes are disabled so every path maps to static content.
    """
    app = FastAPI(
        title="treeserve",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    logger.debug(f"Serving static content from {static_dir}")
    return app


def redirect_location(request: Request) -> str:
    """
    Builds the https URL a plain request is redirected to.

    The host comes from the request's own Host header, not from the
    configured bind host.
    """
    host = request.headers.get("host", "")
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        path = f"{path}?{query.decode('latin-1')}"
    return f"https://{host}{path}"


def create_redirect_app() -> FastAPI:
    """
    Factory function for the app answering every request with a 301
    to the same host and path over https.

    The redirect runs as middleware ahead of routing, so it answers any
    method and any path.
    """
    app = FastAPI(
        title="treeserve redirect",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def redirect_to_https(request: Request, call_next) -> Response:
        return Response(status_code=301, headers={"Location": redirect_location(request)})

    return app
