"""Pydantic response models for the argotunnel REST API.

All models use Pydantic v2 syntax.  Field descriptions are also used by
FastAPI to generate the OpenAPI spec.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(
        ...,
        description="Always ``ok`` while the process is running.",
        examples=["ok"],
    )
    version: str = Field(
        ...,
        description="argotunnel version string.",
        examples=["0.1.0"],
    )
    cache_synced: bool = Field(
        ...,
        description="True once every informer completed its initial list.",
    )


class TunnelOptionsResponse(BaseModel):
    compression_quality: int
    ha_connections: int
    heartbeat_count: int
    heartbeat_interval_seconds: float
    lb_pool: str
    no_chunked_encoding: bool
    retries: int
    grace_period_seconds: float


class TunnelRuleResponse(BaseModel):
    """One live tunnel of a route."""

    host: str = Field(..., description="Public hostname served by the tunnel.")
    origin_url: str = Field(..., description="In-cluster origin, ``service.namespace:port``.")
    service: str = Field(..., description="Backend Service as ``namespace/name``.")
    secret: str = Field(..., description="Origin certificate Secret as ``namespace/name``.")
    port: int
    running: bool | None = Field(
        default=None,
        description="Whether the link is started; null when the link does not report it.",
    )


class TunnelRouteResponse(BaseModel):
    namespace: str
    name: str
    options: TunnelOptionsResponse
    rules: list[TunnelRuleResponse] = Field(default_factory=list)


class RoutesResponse(BaseModel):
    """Response body for ``GET /api/v1/routes``."""

    routes: list[TunnelRouteResponse] = Field(default_factory=list)
    total_links: int = 0
