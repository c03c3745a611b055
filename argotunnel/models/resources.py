"""Tunnel route data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from argotunnel.tunnel.options import DEFAULT_TUNNEL_OPTIONS, TunnelOptions

if TYPE_CHECKING:
    from argotunnel.tunnel.link import TunnelLink


def item_key_func(namespace: str, name: str) -> str:
    """Return the namespace-qualified store key ``namespace/name``."""
    return namespace + "/" + name


@dataclass(frozen=True)
class Resource:
    """Identity of a referenced namespaced object (Service or Secret)."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return item_key_func(self.namespace, self.name)

    @classmethod
    def from_key(cls, key: str) -> Resource:
        """Parse a ``namespace/name`` key.

        Raises:
            ValueError: if the key does not have exactly one separator.
        """
        namespace, sep, name = key.partition("/")
        if not sep or "/" in name:
            raise ValueError(f"resource key must be in namespace/name format, got: {key!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True)
class TunnelRule:
    """Unique key of one desired tunnel.

    Two rules are equal iff service, secret, host and port all match; the
    route registry diffs live links on this equality.
    """

    service: Resource
    secret: Resource
    host: str
    port: int


@dataclass(frozen=True)
class TunnelRoute:
    """Desired tunnel state for one Ingress at a point in time.

    A freshly translated route maps every rule to ``None``; the registry
    stores a copy with the live links attached.  Routes are replaced, never
    mutated.
    """

    name: str
    namespace: str
    options: TunnelOptions = DEFAULT_TUNNEL_OPTIONS
    links: dict[TunnelRule, TunnelLink | None] = field(default_factory=dict)
    certs: dict[TunnelRule, bytes] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return item_key_func(self.namespace, self.name)

    def rules(self) -> list[TunnelRule]:
        """Return the route's rules in insertion order."""
        return list(self.links)
