"""Shared informers for the four resource kinds the controller follows.

Each :class:`ResourceInformer` lists and watches one kind across all
namespaces, keeps an :class:`~argotunnel.cache.indexer.IndexedStore` in
step with the API server, and fans every change out to registered
:class:`ResourceEventHandler` callbacks.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from argotunnel.cache.indexer import (
    SECRET_INDEX,
    SERVICE_INDEX,
    IndexedStore,
    ingress_secret_index_func,
    ingress_service_index_func,
    meta_namespace_key_func,
)
from argotunnel.collector.watcher import BaseWatcher
from argotunnel.models.resources import Resource
from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import store_synced

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

ObjectHandler = Callable[[Any], Awaitable[None]]
UpdateHandler = Callable[[Any, Any], Awaitable[None]]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_SYNC_POLL_INTERVAL_S: float = 0.1

ENDPOINTS_KIND: str = "Endpoints"
INGRESS_KIND: str = "Ingress"
SECRET_KIND: str = "Secret"
SERVICE_KIND: str = "Service"


@dataclass
class ResourceEventHandler:
    """Async callbacks invoked for store changes.  Any of them may be None."""

    on_add: ObjectHandler | None = None
    on_update: UpdateHandler | None = None
    on_delete: ObjectHandler | None = None


class ResourceInformer(BaseWatcher):
    """List+watch one resource kind into an indexed store.

    Usage::

        v1 = kubernetes_asyncio.client.CoreV1Api()
        informer = ResourceInformer(v1, SERVICE_KIND, "list_service_for_all_namespaces", IndexedStore(SERVICE_KIND))
        informer.add_event_handler(ResourceEventHandler(on_add=my_cb))
        await informer.start()
    """

    def __init__(
        self,
        api: Any,
        kind: str,
        list_method: str,
        store: IndexedStore,
        resync_period: float = 0.0,
    ) -> None:
        """Initialise the informer.

        Args:
            api: The kubernetes_asyncio API instance owning ``list_method``.
            kind: Resource kind, used for logs and metrics.
            list_method: Name of the all-namespaces list method on ``api``.
            store: The store this informer keeps in sync.
            resync_period: Seconds between re-deliveries of every cached
                object as an update; 0 disables resync.
        """
        super().__init__(api, name=kind.lower())
        self._kind = kind
        self._list_method = list_method
        self._store = store
        self._resync_period = resync_period
        self._handlers: list[ResourceEventHandler] = []
        self._synced = False
        self._resync_task: asyncio.Task[None] | None = None
        self._log = get_logger(f"informer.{kind.lower()}")

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def store(self) -> IndexedStore:
        return self._store

    def has_synced(self) -> bool:
        """Return True once the initial full list has been stored."""
        return self._synced

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        self._handlers.append(handler)

    async def start(self) -> None:
        await super().start()
        if self._resync_period > 0 and self._resync_task is None:
            self._resync_task = asyncio.create_task(self._resync_loop(), name=f"resync-{self._name}")

    async def stop(self) -> None:
        if self._resync_task is not None:
            self._resync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._resync_task
            self._resync_task = None
        await super().stop()

    # ------------------------------------------------------------------
    # BaseWatcher implementation
    # ------------------------------------------------------------------

    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        return getattr(self._api, self._list_method)  # type: ignore[no-any-return]

    async def _replace(self, items: list[Any]) -> None:
        """Swap the store content for a fresh listing and emit the delta."""
        previous = {key: self._store.get_by_key(key) for key in self._store.list_keys()}
        self._store.replace(items)
        if not self._synced:
            self._synced = True
            store_synced.labels(kind=self._kind).set(1)
            self._log.info("informer_synced", kind=self._kind, count=len(self._store))

        for obj in self._store.list():
            old = previous.pop(meta_namespace_key_func(obj), None)
            if old is None:
                await self._dispatch_add(obj)
            else:
                await self._dispatch_update(old, obj)
        for old in previous.values():
            await self._dispatch_delete(old)

    async def _handle_event(self, event_type: str, obj: Any, raw: dict[str, Any]) -> None:
        if obj is None:
            return
        key = meta_namespace_key_func(obj)
        if event_type in ("ADDED", "MODIFIED"):
            old = self._store.get_by_key(key)
            if not self._store.update(obj):
                return
            if old is None:
                await self._dispatch_add(obj)
            else:
                await self._dispatch_update(old, obj)
        elif event_type == "DELETED":
            old = self._store.get_by_key(key)
            if self._store.delete_key(key):
                await self._dispatch_delete(old if old is not None else obj)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_add(self, obj: Any) -> None:
        await self._dispatch("add", [h.on_add(obj) for h in self._handlers if h.on_add is not None])

    async def _dispatch_update(self, old: Any, new: Any) -> None:
        await self._dispatch("update", [h.on_update(old, new) for h in self._handlers if h.on_update is not None])

    async def _dispatch_delete(self, obj: Any) -> None:
        await self._dispatch("delete", [h.on_delete(obj) for h in self._handlers if h.on_delete is not None])

    async def _dispatch(self, action: str, calls: list[Awaitable[None]]) -> None:
        if not calls:
            return
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._log.error(
                    "informer_handler_failed",
                    kind=self._kind,
                    action=action,
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def _resync_loop(self) -> None:
        """Periodically re-deliver every cached object as an update."""
        while self._running:
            await asyncio.sleep(self._resync_period)
            if not self._synced:
                continue
            self._log.debug("informer_resync", kind=self._kind, count=len(self._store))
            for obj in self._store.list():
                await self._dispatch_update(obj, obj)


@dataclass
class InformerSet:
    """The four informers the translator reads from."""

    endpoint: ResourceInformer
    ingress: ResourceInformer
    secret: ResourceInformer
    service: ResourceInformer

    def all(self) -> list[ResourceInformer]:
        return [self.endpoint, self.ingress, self.secret, self.service]

    async def run(self) -> None:
        """Start every informer's list+watch loop."""
        for informer in self.all():
            await informer.start()

    async def stop(self) -> None:
        for informer in self.all():
            await informer.stop()

    def has_synced(self) -> bool:
        return all(informer.has_synced() for informer in self.all())

    async def wait_for_cache_sync(self, timeout: float) -> bool:
        """Wait until all four stores completed their initial list.

        Returns:
            False if ``timeout`` seconds elapse first.
        """
        try:
            async with asyncio.timeout(timeout):
                while not self.has_synced():
                    await asyncio.sleep(_SYNC_POLL_INTERVAL_S)
        except TimeoutError:
            return False
        return True


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def new_endpoint_informer(core_api: Any, resync_period: float = 0.0) -> ResourceInformer:
    return ResourceInformer(
        core_api,
        ENDPOINTS_KIND,
        "list_endpoints_for_all_namespaces",
        IndexedStore(ENDPOINTS_KIND),
        resync_period,
    )


def new_ingress_informer(
    networking_api: Any,
    default_secret: Resource | None = None,
    resync_period: float = 0.0,
) -> ResourceInformer:
    store = IndexedStore(
        INGRESS_KIND,
        {
            SECRET_INDEX: ingress_secret_index_func(default_secret),
            SERVICE_INDEX: ingress_service_index_func(),
        },
    )
    return ResourceInformer(networking_api, INGRESS_KIND, "list_ingress_for_all_namespaces", store, resync_period)


def new_secret_informer(core_api: Any, resync_period: float = 0.0) -> ResourceInformer:
    return ResourceInformer(
        core_api,
        SECRET_KIND,
        "list_secret_for_all_namespaces",
        IndexedStore(SECRET_KIND),
        resync_period,
    )


def new_service_informer(core_api: Any, resync_period: float = 0.0) -> ResourceInformer:
    return ResourceInformer(
        core_api,
        SERVICE_KIND,
        "list_service_for_all_namespaces",
        IndexedStore(SERVICE_KIND),
        resync_period,
    )


def new_informer_set(
    core_api: Any,
    networking_api: Any,
    default_secret: Resource | None = None,
    resync_period: float = 0.0,
) -> InformerSet:
    """Build the endpoint/ingress/secret/service informers."""
    return InformerSet(
        endpoint=new_endpoint_informer(core_api, resync_period),
        ingress=new_ingress_informer(networking_api, default_secret, resync_period),
        secret=new_secret_informer(core_api, resync_period),
        service=new_service_informer(core_api, resync_period),
    )
