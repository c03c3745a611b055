"""Ingress controller: informer events in, route registry updates out."""

from __future__ import annotations

from typing import Any

from structlog.typing import FilteringBoundLogger

from argotunnel.cache.indexer import SECRET_INDEX, SERVICE_INDEX, meta_namespace_key_func
from argotunnel.collector.informer import InformerSet, ResourceEventHandler
from argotunnel.controller.annotations import parse_ingress_class
from argotunnel.controller.router import TunnelRouter
from argotunnel.controller.translator import SyncTranslator
from argotunnel.k8s import object_name, object_namespace
from argotunnel.observability.logging import get_logger

DEFAULT_INGRESS_CLASS = "argo-tunnel"


class IngressController:
    """Keeps the route registry in step with the informer caches.

    Ingress events translate (or drop) the Ingress directly.  Service,
    Endpoints and Secret events fan out to every Ingress that references the
    changed object, found through the ingress store's secondary indexes.
    """

    def __init__(
        self,
        informers: InformerSet,
        translator: SyncTranslator,
        router: TunnelRouter,
        ingress_class: str = DEFAULT_INGRESS_CLASS,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._informers = informers
        self._translator = translator
        self._router = router
        self._ingress_class = ingress_class
        self._log = log or get_logger("controller")

    def register(self) -> None:
        """Attach the controller's handlers to all four informers."""
        self._informers.ingress.add_event_handler(
            ResourceEventHandler(
                on_add=self._on_ingress_add,
                on_update=self._on_ingress_update,
                on_delete=self._on_ingress_delete,
            )
        )
        for informer, index_name in (
            (self._informers.service, SERVICE_INDEX),
            (self._informers.endpoint, SERVICE_INDEX),
            (self._informers.secret, SECRET_INDEX),
        ):
            informer.add_event_handler(self._dependency_handler(index_name))

    def is_claimed(self, ing: Any) -> bool:
        """Return True if ``ing`` names this controller's ingress class."""
        value, ok = parse_ingress_class(ing)
        return ok and value == self._ingress_class

    async def sync_ingress(self, ing: Any) -> None:
        """Translate ``ing`` and apply it, or drop its route if unclaimed."""
        namespace, name = object_namespace(ing), object_name(ing)
        if not self.is_claimed(ing):
            await self._router.delete_route(namespace, name)
            return
        route = self._translator.get_route_from_ingress(ing)
        if route is None:
            return
        await self._router.update_route(route)

    async def sync_all(self) -> int:
        """Sync every cached Ingress.  Returns how many were synced."""
        ingresses = self._informers.ingress.store.list()
        for ing in ingresses:
            try:
                await self.sync_ingress(ing)
            except Exception as exc:
                self._log.error("ingress_sync_failed", ingress=meta_namespace_key_func(ing), error=str(exc))
        self._log.info("ingress_full_sync", count=len(ingresses))
        return len(ingresses)

    async def resync_by_index(self, index_name: str, key: str) -> int:
        """Re-sync every Ingress indexed under ``key``.  Returns how many were synced."""
        ingresses = self._informers.ingress.store.by_index(index_name, key)
        for ing in ingresses:
            try:
                await self.sync_ingress(ing)
            except Exception as exc:
                self._log.error(
                    "ingress_sync_failed",
                    ingress=meta_namespace_key_func(ing),
                    index=index_name,
                    key=key,
                    error=str(exc),
                )
        if ingresses:
            self._log.debug("ingress_resync", index=index_name, key=key, count=len(ingresses))
        return len(ingresses)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_ingress_add(self, ing: Any) -> None:
        await self.sync_ingress(ing)

    async def _on_ingress_update(self, old: Any, new: Any) -> None:
        await self.sync_ingress(new)

    async def _on_ingress_delete(self, ing: Any) -> None:
        await self._router.delete_route(object_namespace(ing), object_name(ing))

    def _dependency_handler(self, index_name: str) -> ResourceEventHandler:
        async def on_change(obj: Any) -> None:
            await self.resync_by_index(index_name, meta_namespace_key_func(obj))

        async def on_update(old: Any, new: Any) -> None:
            await on_change(new)

        return ResourceEventHandler(on_add=on_change, on_update=on_update, on_delete=on_change)
