"""Engine configuration for a single tunnel link."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import timedelta

from argotunnel.models.resources import TunnelRule
from argotunnel.tunnel.options import TunnelOptions

TUNNEL_SERVER_NAME = "cftunnel.com"

_CLIENT_ID_ALPHABET = string.ascii_letters + string.digits


def random_client_id(n: int = 32) -> str:
    """Return a random alphanumeric token of length ``n``."""
    return "".join(secrets.choice(_CLIENT_ID_ALPHABET) for _ in range(n))


def get_origin_url(rule: TunnelRule) -> str:
    """Return the in-cluster address the tunnel forwards to, ``svc.ns:port``."""
    return f"{rule.service.name}.{rule.service.namespace}:{rule.port}"


@dataclass
class TunnelConfig:
    """Everything the engine needs to run one tunnel.

    ``client_id`` is the only field that changes over a link's lifetime: it
    is rotated on every repair so the edge sees a fresh connection identity.
    """

    origin_url: str
    hostname: str
    origin_cert: bytes = field(repr=False)
    server_name: str = TUNNEL_SERVER_NAME
    retries: int = 5
    heartbeat_interval: timedelta = timedelta(seconds=5)
    heartbeat_count: int = 5
    ha_connections: int = 4
    lb_pool: str = ""
    grace_period: timedelta = timedelta(seconds=30)
    no_chunked_encoding: bool = False
    compression_quality: int = 0
    tags: dict[str, str] = field(default_factory=dict)
    client_id: str = field(default_factory=random_client_id)


def new_link_tunnel_config(rule: TunnelRule, cert: bytes, options: TunnelOptions) -> TunnelConfig:
    """Build the engine configuration for ``rule`` with ``options`` applied."""
    return TunnelConfig(
        origin_url=get_origin_url(rule),
        hostname=rule.host,
        origin_cert=cert,
        retries=options.retries,
        heartbeat_interval=options.heartbeat_interval,
        heartbeat_count=options.heartbeat_count,
        ha_connections=options.ha_connections,
        lb_pool=options.lb_pool,
        grace_period=options.grace_period,
        no_chunked_encoding=options.no_chunked_encoding,
        compression_quality=options.compression_quality,
        tags={
            "ingress.namespace": rule.service.namespace,
            "ingress.service": rule.service.name,
        },
    )
