"""FastAPI route handlers for the argotunnel REST API.

All routes are registered on a single APIRouter that ``create_app`` mounts
under the ``/api/v1`` prefix.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from argotunnel.api.schemas import (
    HealthStatus,
    RoutesResponse,
    TunnelOptionsResponse,
    TunnelRouteResponse,
    TunnelRuleResponse,
)
from argotunnel.models.resources import TunnelRoute
from argotunnel.tunnel.config import get_origin_url

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _route_to_schema(route: TunnelRoute) -> TunnelRouteResponse:
    opts = route.options
    rules = []
    for rule, link in route.links.items():
        running = getattr(link, "running", None) if link is not None else False
        rules.append(
            TunnelRuleResponse(
                host=rule.host,
                origin_url=get_origin_url(rule),
                service=rule.service.key,
                secret=rule.secret.key,
                port=rule.port,
                running=running if isinstance(running, bool) else None,
            )
        )
    return TunnelRouteResponse(
        namespace=route.namespace,
        name=route.name,
        options=TunnelOptionsResponse(
            compression_quality=opts.compression_quality,
            ha_connections=opts.ha_connections,
            heartbeat_count=opts.heartbeat_count,
            heartbeat_interval_seconds=opts.heartbeat_interval.total_seconds(),
            lb_pool=opts.lb_pool,
            no_chunked_encoding=opts.no_chunked_encoding,
            retries=opts.retries,
            grace_period_seconds=opts.grace_period.total_seconds(),
        ),
        rules=rules,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe.  Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    from argotunnel import __version__

    informers = getattr(request.app.state, "informers", None)
    synced = bool(informers.has_synced()) if informers is not None else False
    return HealthStatus(status="ok", version=__version__, cache_synced=synced)


@router.get(
    "/routes",
    response_model=RoutesResponse,
    summary="Live tunnel routes",
    description="Every claimed Ingress with the tunnels currently held for it.",
)
async def get_routes(request: Request) -> RoutesResponse:
    """``GET /api/v1/routes``"""
    routes = [_route_to_schema(route) for route in request.app.state.tunnel_router.routes()]
    return RoutesResponse(routes=routes, total_links=sum(len(r.rules) for r in routes))
