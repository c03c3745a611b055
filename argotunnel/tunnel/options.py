"""Per-ingress tunnel options and their engine defaults."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class TunnelOptions:
    """Immutable tunnel settings shared by every link of one Ingress.

    Compared by value: the route registry treats a change in any field as a
    reason to replace the links built from it.
    """

    compression_quality: int = 0
    ha_connections: int = 4
    heartbeat_count: int = 5
    heartbeat_interval: timedelta = timedelta(seconds=5)
    lb_pool: str = ""
    no_chunked_encoding: bool = False
    retries: int = 5
    grace_period: timedelta = timedelta(seconds=30)


DEFAULT_TUNNEL_OPTIONS = TunnelOptions()

OPTION_FIELDS: frozenset[str] = frozenset(f.name for f in dataclasses.fields(TunnelOptions))


def collect_tunnel_options(
    overrides: Mapping[str, object] | None = None,
    base: TunnelOptions = DEFAULT_TUNNEL_OPTIONS,
) -> TunnelOptions:
    """Merge parsed option overrides over ``base``.

    Unknown option names are ignored so a newer annotation set never breaks
    an older engine baseline.
    """
    if not overrides:
        return base
    known = {k: v for k, v in overrides.items() if k in OPTION_FIELDS}
    return dataclasses.replace(base, **known)  # type: ignore[arg-type]
