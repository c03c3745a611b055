"""Unit tests for argotunnel.collector.informer."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from kubernetes_asyncio.client import V1ObjectMeta, V1Service

from argotunnel.cache.indexer import IndexedStore
from argotunnel.collector.informer import (
    SERVICE_KIND,
    ResourceEventHandler,
    ResourceInformer,
    new_informer_set,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_service(name: str, rv: str = "1", namespace: str = "unit") -> V1Service:
    return V1Service(metadata=V1ObjectMeta(name=name, namespace=namespace, resource_version=rv))


class _Recorder:
    """Collects handler invocations as (action, key) pairs."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def on_add(self, obj: Any) -> None:
        self.calls.append(("add", obj.metadata.name))

    async def on_update(self, old: Any, new: Any) -> None:
        self.calls.append(("update", new.metadata.name))

    async def on_delete(self, obj: Any) -> None:
        self.calls.append(("delete", obj.metadata.name))

    def handler(self) -> ResourceEventHandler:
        return ResourceEventHandler(on_add=self.on_add, on_update=self.on_update, on_delete=self.on_delete)


def _make_informer(recorder: _Recorder | None = None) -> ResourceInformer:
    informer = ResourceInformer(
        MagicMock(), SERVICE_KIND, "list_service_for_all_namespaces", IndexedStore(SERVICE_KIND)
    )
    if recorder is not None:
        informer.add_event_handler(recorder.handler())
    return informer


# ===========================================================================
# Full listings
# ===========================================================================


class TestReplace:
    async def test_first_listing_marks_synced_and_adds(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)
        assert informer.has_synced() is False

        await informer._replace([_make_service("svc-a"), _make_service("svc-b")])

        assert informer.has_synced() is True
        assert sorted(recorder.calls) == [("add", "svc-a"), ("add", "svc-b")]
        assert informer.store.list_keys() == ["unit/svc-a", "unit/svc-b"]

    async def test_relist_emits_delta(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)
        await informer._replace([_make_service("svc-a"), _make_service("svc-b")])
        recorder.calls.clear()

        await informer._replace([_make_service("svc-b", rv="2"), _make_service("svc-c")])

        assert sorted(recorder.calls) == [("add", "svc-c"), ("delete", "svc-a"), ("update", "svc-b")]
        assert informer.store.list_keys() == ["unit/svc-b", "unit/svc-c"]

    async def test_empty_listing_still_syncs(self) -> None:
        informer = _make_informer()
        await informer._replace([])
        assert informer.has_synced() is True


# ===========================================================================
# Watch events
# ===========================================================================


class TestHandleEvent:
    async def test_added_then_modified_then_deleted(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)

        await informer._handle_event("ADDED", _make_service("svc-a"), {})
        await informer._handle_event("MODIFIED", _make_service("svc-a", rv="2"), {})
        await informer._handle_event("DELETED", _make_service("svc-a", rv="3"), {})

        assert recorder.calls == [("add", "svc-a"), ("update", "svc-a"), ("delete", "svc-a")]
        assert len(informer.store) == 0

    async def test_modified_unknown_object_is_an_add(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)
        await informer._handle_event("MODIFIED", _make_service("svc-a"), {})
        assert recorder.calls == [("add", "svc-a")]

    async def test_delete_of_unknown_object_is_silent(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)
        await informer._handle_event("DELETED", _make_service("svc-a"), {})
        assert recorder.calls == []

    async def test_none_object_ignored(self) -> None:
        recorder = _Recorder()
        informer = _make_informer(recorder)
        await informer._handle_event("ADDED", None, {})
        assert recorder.calls == []

    async def test_delete_hands_out_cached_version(self) -> None:
        cached = _make_service("svc-a")
        seen: list[Any] = []

        async def on_delete(obj: Any) -> None:
            seen.append(obj)

        informer = _make_informer()
        informer.add_event_handler(ResourceEventHandler(on_delete=on_delete))
        await informer._handle_event("ADDED", cached, {})
        await informer._handle_event("DELETED", _make_service("svc-a", rv="9"), {})

        assert seen == [cached]

    async def test_failing_handler_does_not_block_others(self) -> None:
        recorder = _Recorder()
        informer = _make_informer()
        informer.add_event_handler(ResourceEventHandler(on_add=AsyncMock(side_effect=RuntimeError("boom"))))
        informer.add_event_handler(recorder.handler())

        await informer._handle_event("ADDED", _make_service("svc-a"), {})

        assert recorder.calls == [("add", "svc-a")]
        assert informer.store.get("unit", "svc-a") is not None

    async def test_handlers_with_missing_callbacks(self) -> None:
        informer = _make_informer()
        informer.add_event_handler(ResourceEventHandler())
        await informer._handle_event("ADDED", _make_service("svc-a"), {})
        await informer._handle_event("DELETED", _make_service("svc-a"), {})


# ===========================================================================
# Resync
# ===========================================================================


class TestResync:
    async def test_resync_redelivers_updates(self) -> None:
        recorder = _Recorder()
        informer = ResourceInformer(
            MagicMock(),
            SERVICE_KIND,
            "list_service_for_all_namespaces",
            IndexedStore(SERVICE_KIND),
            resync_period=0.01,
        )
        informer.add_event_handler(recorder.handler())
        await informer._replace([_make_service("svc-a")])
        recorder.calls.clear()

        informer._running = True
        task = asyncio.create_task(informer._resync_loop())
        await asyncio.sleep(0.05)
        informer._running = False
        task.cancel()

        assert ("update", "svc-a") in recorder.calls


# ===========================================================================
# InformerSet
# ===========================================================================


class TestInformerSet:
    def test_kinds_and_list_methods(self) -> None:
        informers = new_informer_set(MagicMock(), MagicMock())
        assert [i.kind for i in informers.all()] == ["Endpoints", "Ingress", "Secret", "Service"]
        assert informers.ingress._list_method == "list_ingress_for_all_namespaces"
        assert informers.endpoint._list_method == "list_endpoints_for_all_namespaces"

    def test_list_func_resolves_api_method(self) -> None:
        core, networking = MagicMock(), MagicMock()
        informers = new_informer_set(core, networking)
        assert informers.secret._list_func() is core.list_secret_for_all_namespaces
        assert informers.ingress._list_func() is networking.list_ingress_for_all_namespaces

    async def test_has_synced_requires_every_store(self) -> None:
        informers = new_informer_set(MagicMock(), MagicMock())
        for informer in informers.all()[:-1]:
            await informer._replace([])
        assert informers.has_synced() is False
        await informers.service._replace([])
        assert informers.has_synced() is True

    async def test_wait_for_cache_sync_true(self) -> None:
        informers = new_informer_set(MagicMock(), MagicMock())
        for informer in informers.all():
            await informer._replace([])
        assert await informers.wait_for_cache_sync(timeout=1.0) is True

    async def test_wait_for_cache_sync_times_out(self) -> None:
        informers = new_informer_set(MagicMock(), MagicMock())
        assert await informers.wait_for_cache_sync(timeout=0.05) is False

    async def test_run_and_stop_every_informer(self) -> None:
        informers = new_informer_set(MagicMock(), MagicMock())
        for informer in informers.all():
            informer.start = AsyncMock()  # type: ignore[method-assign]
            informer.stop = AsyncMock()  # type: ignore[method-assign]

        await informers.run()
        await informers.stop()

        for informer in informers.all():
            informer.start.assert_awaited_once()  # type: ignore[attr-defined]
            informer.stop.assert_awaited_once()  # type: ignore[attr-defined]
