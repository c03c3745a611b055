"""Unit tests for argotunnel.app: ArgoTunnelApp lifecycle and _ComponentError."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from argotunnel.app import ArgoTunnelApp, _ComponentError, main
from argotunnel.collector.informer import new_informer_set
from argotunnel.models.config import ApiConfig, ArgoTunnelConfig
from argotunnel.observability.logging import get_logger

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_app(config: ArgoTunnelConfig | None = None) -> ArgoTunnelApp:
    """An app whose config and logger are set as if start() had run steps 1-2."""
    app = ArgoTunnelApp()
    app.config = config or ArgoTunnelConfig()
    app._log = get_logger("app")
    return app


# ---------------------------------------------------------------------------
# TestComponentError
# ---------------------------------------------------------------------------


class TestComponentError:
    def test_stores_fields(self) -> None:
        cause = ValueError("something went wrong")
        err = _ComponentError("informers", cause)
        assert err.component == "informers"
        assert err.cause is cause

    def test_message_includes_component_and_cause(self) -> None:
        err = _ComponentError("controller", RuntimeError("fail"))
        assert "controller" in str(err)
        assert "fail" in str(err)


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------


class TestStartInformers:
    async def test_sync_timeout_is_fatal(self) -> None:
        app = _make_app()
        informers = MagicMock()
        informers.run = AsyncMock()
        informers.wait_for_cache_sync = AsyncMock(return_value=False)

        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch("kubernetes_asyncio.client.NetworkingV1Api"),
            patch("argotunnel.collector.informer.new_informer_set", return_value=informers),
            pytest.raises(_ComponentError) as exc_info,
        ):
            await app._start_informers()

        assert exc_info.value.component == "informers"
        assert isinstance(exc_info.value.cause, TimeoutError)
        informers.wait_for_cache_sync.assert_awaited_once_with(60.0)

    async def test_run_failure_is_fatal(self) -> None:
        app = _make_app()
        informers = MagicMock()
        informers.run = AsyncMock(side_effect=RuntimeError("no api"))

        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch("kubernetes_asyncio.client.NetworkingV1Api"),
            patch("argotunnel.collector.informer.new_informer_set", return_value=informers),
            pytest.raises(_ComponentError, match="no api"),
        ):
            await app._start_informers()

    async def test_synced_informers_are_kept(self) -> None:
        app = _make_app()
        informers = MagicMock()
        informers.run = AsyncMock()
        informers.wait_for_cache_sync = AsyncMock(return_value=True)
        informers.all = MagicMock(return_value=[])

        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch("kubernetes_asyncio.client.NetworkingV1Api"),
            patch("argotunnel.collector.informer.new_informer_set", return_value=informers),
        ):
            await app._start_informers()

        assert app._informers is informers


class TestStartController:
    async def test_builds_router_and_controller(self) -> None:
        app = _make_app()
        app._informers = new_informer_set(MagicMock(), MagicMock())

        await app._start_controller()

        assert app._router is not None
        assert app._controller is not None
        assert app._router.routes() == []

    async def test_rest_disabled(self) -> None:
        app = _make_app(ArgoTunnelConfig(api=ApiConfig(enabled=False)))
        await app._start_rest()
        assert app._rest_server is None
        assert app._background_tasks == []


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_without_start_is_noop(self) -> None:
        app = ArgoTunnelApp()
        await app.stop()
        assert app.running is False

    async def test_stop_order_informers_then_router(self) -> None:
        app = _make_app()
        calls: list[str] = []
        informers = MagicMock()
        informers.stop = AsyncMock(side_effect=lambda: calls.append("informers"))
        router = MagicMock()
        router.stop = AsyncMock(side_effect=lambda: calls.append("router"))
        api_client = MagicMock()
        api_client.close = AsyncMock(side_effect=lambda: calls.append("k8s"))
        app._informers, app._router, app._api_client = informers, router, api_client
        app._running = True

        await app.stop()

        assert calls == ["informers", "router", "k8s"]
        assert app.running is False
        assert app._informers is None
        assert app._router is None
        assert app._api_client is None

    async def test_component_stop_failure_does_not_block_others(self) -> None:
        app = _make_app()
        informers = MagicMock()
        informers.stop = AsyncMock(side_effect=RuntimeError("boom"))
        router = MagicMock()
        router.stop = AsyncMock()
        app._informers, app._router = informers, router
        app._running = True

        await app.stop()

        router.stop.assert_awaited_once()


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    async def test_startup_failure_exits_non_zero(self) -> None:
        error = _ComponentError("informers", TimeoutError("caches not synced"))
        with (
            patch("argotunnel.app.ArgoTunnelApp.start", new_callable=AsyncMock, side_effect=error),
            pytest.raises(SystemExit) as exc_info,
        ):
            await main()

        assert exc_info.value.code == 1
