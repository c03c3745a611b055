"""Route registry: the live tunnel links of every claimed Ingress.

The registry is the only owner of links.  Each update diffs a freshly
translated route against the route currently held for the same Ingress:

* a rule whose existing link already serves the same inputs keeps running;
* a rule whose link differs gets the old link stopped and the new started;
* a rule no longer present has its link stopped.

All operations are serialized by a single lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from structlog.typing import FilteringBoundLogger

from argotunnel.models.resources import TunnelRoute, TunnelRule, item_key_func
from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import routes_active
from argotunnel.tunnel.config import get_origin_url
from argotunnel.tunnel.link import TunnelLink
from argotunnel.tunnel.options import TunnelOptions

LinkFactory = Callable[[TunnelRule, bytes, TunnelOptions], TunnelLink]


class TunnelRouter:
    """Keeps one started link per live rule, keyed by Ingress."""

    def __init__(self, link_factory: LinkFactory, log: FilteringBoundLogger | None = None) -> None:
        self._link_factory = link_factory
        self._routes: dict[str, TunnelRoute] = {}
        self._lock = asyncio.Lock()
        self._log = log or get_logger("router")

    def routes(self) -> list[TunnelRoute]:
        """Return a snapshot of the held routes, ordered by key."""
        return [self._routes[key] for key in sorted(self._routes)]

    def get_route(self, namespace: str, name: str) -> TunnelRoute | None:
        return self._routes.get(item_key_func(namespace, name))

    async def update_route(self, route: TunnelRoute) -> None:
        """Bring the links of ``route``'s Ingress in line with ``route``."""
        async with self._lock:
            previous = self._routes.get(route.key)
            remaining: dict[TunnelRule, TunnelLink | None] = dict(previous.links) if previous is not None else {}
            links: dict[TunnelRule, TunnelLink | None] = {}
            kept = started = stopped = 0

            for rule in route.rules():
                cert = route.certs.get(rule, b"")
                existing = remaining.pop(rule, None)
                if existing is not None and _serves(existing, rule, cert, route.options):
                    links[rule] = existing
                    kept += 1
                    continue
                if existing is not None:
                    await existing.stop()
                    stopped += 1
                candidate = self._link_factory(rule, cert, route.options)
                await candidate.start()
                links[rule] = candidate
                started += 1

            for link in remaining.values():
                if link is not None:
                    await link.stop()
                    stopped += 1

            self._routes[route.key] = TunnelRoute(
                name=route.name,
                namespace=route.namespace,
                options=route.options,
                links=links,
                certs=dict(route.certs),
            )
            routes_active.set(len(self._routes))

        self._log.info(
            "route_updated",
            route=route.key,
            kept=kept,
            started=started,
            stopped=stopped,
        )

    async def delete_route(self, namespace: str, name: str) -> None:
        """Stop every link of the route held for ``namespace/name``."""
        key = item_key_func(namespace, name)
        async with self._lock:
            route = self._routes.pop(key, None)
            if route is None:
                return
            await self._stop_links(route)
            routes_active.set(len(self._routes))
        self._log.info("route_deleted", route=key, links=len(route.links))

    async def stop(self) -> None:
        """Stop every link of every route and wait for them to wind down."""
        async with self._lock:
            routes = list(self._routes.values())
            self._routes.clear()
            for route in routes:
                await self._stop_links(route)
            routes_active.set(0)

        waiters = []
        for route in routes:
            for link in route.links.values():
                wait_closed = getattr(link, "wait_closed", None)
                if wait_closed is None:
                    continue
                result = wait_closed()
                if asyncio.iscoroutine(result):
                    waiters.append(result)
        if waiters:
            await asyncio.gather(*waiters, return_exceptions=True)
        self._log.info("router_stopped", routes=len(routes))

    async def _stop_links(self, route: TunnelRoute) -> None:
        for link in route.links.values():
            if link is not None:
                await link.stop()


def _serves(link: TunnelLink, rule: TunnelRule, cert: bytes, options: TunnelOptions) -> bool:
    """Return True if ``link`` already runs the tunnel these inputs describe."""
    return (
        link.host == rule.host
        and link.origin_url == get_origin_url(rule)
        and link.options == options
        and link.origin_cert == cert
    )
