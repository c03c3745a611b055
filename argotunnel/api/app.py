"""FastAPI application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from argotunnel.api.routes import router


def create_app(tunnel_router: Any, informers: Any = None) -> FastAPI:
    """Build the REST application.

    Args:
        tunnel_router: The route registry served by ``/api/v1/routes``.
        informers: Informer set consulted for cache sync state; optional.
    """
    from argotunnel import __version__

    app = FastAPI(
        title="argotunnel",
        version=__version__,
        openapi_url="/api/v1/openapi.json",
        docs_url="/api/v1/docs",
        redoc_url=None,
    )
    app.state.tunnel_router = tunnel_router
    app.state.informers = informers
    app.include_router(router, prefix="/api/v1")
    app.mount("/metrics", make_asgi_app())
    return app
