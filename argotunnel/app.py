"""Application bootstrap for argotunnel.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → informers → cache sync
              → router/controller → REST

Shutdown is fully graceful: components are stopped in reverse startup order.
Each component's start/stop error is caught and logged independently so that
a single component failure does not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from argotunnel.config import load_config, parse_default_secret
from argotunnel.models.config import ArgoTunnelConfig
from argotunnel.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from argotunnel.collector.informer import InformerSet
    from argotunnel.controller.controller import IngressController
    from argotunnel.controller.router import TunnelRouter

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ArgoTunnelApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self) -> None:
        self.config: ArgoTunnelConfig | None = None

        self._api_client: Any | None = None
        self._informers: InformerSet | None = None
        self._router: TunnelRouter | None = None
        self._controller: IngressController | None = None
        self._rest_server: object | None = None

        # Background tasks that must be cancelled on shutdown
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) re-raises this as a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("argotunnel_starting", version=_argotunnel_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Informers and initial cache sync -------------------------
        await self._start_informers()

        # --- 5. Route registry and controller ----------------------------
        await self._start_controller()

        # --- 6. REST API (optional) --------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("argotunnel_started", ingress_class=self.config.controller.ingress_class)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_k8s_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting_k8s_client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s_client_configured", source="in-cluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s_client_configured", source="kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_informers(self) -> None:
        """Start the four informers and wait for their initial lists."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting_informers")
        cfg = self.config.controller
        try:
            from kubernetes_asyncio import client as k8s_client

            from argotunnel.collector.informer import new_informer_set

            informers = new_informer_set(
                k8s_client.CoreV1Api(self._api_client),
                k8s_client.NetworkingV1Api(self._api_client),
                default_secret=parse_default_secret(cfg.default_secret),
                resync_period=float(cfg.resync_period_seconds),
            )
            self._informers = informers
            await informers.run()
        except Exception as exc:
            raise _ComponentError("informers", exc) from exc

        timeout = float(cfg.cache_sync_timeout_seconds)
        if not await informers.wait_for_cache_sync(timeout):
            raise _ComponentError("informers", TimeoutError(f"caches not synced within {timeout:.0f}s"))
        self._log.info("informers_synced", kinds=[i.kind for i in informers.all()])

    async def _start_controller(self) -> None:
        """Build translator, route registry and controller; reconcile every Ingress."""
        assert self._log is not None
        assert self.config is not None
        assert self._informers is not None
        self._log.debug("starting_controller")
        cfg = self.config
        try:
            from argotunnel.controller import IngressController, SyncTranslator, TunnelRouter
            from argotunnel.tunnel.engine import CloudflaredEngine
            from argotunnel.tunnel.link import SyncTunnelLink

            engine = CloudflaredEngine(binary=cfg.engine.binary)
            repair_delay = timedelta(milliseconds=cfg.engine.repair_delay_ms)
            link_log = get_logger("link")

            def link_factory(rule: Any, cert: bytes, options: Any) -> SyncTunnelLink:
                return SyncTunnelLink(rule, cert, options, engine, log=link_log, repair_delay=repair_delay)

            self._router = TunnelRouter(link_factory)
            translator = SyncTranslator(
                self._informers,
                default_secret=parse_default_secret(cfg.controller.default_secret),
                secret_cert_key=cfg.controller.secret_cert_key,
            )
            controller = IngressController(
                self._informers,
                translator,
                self._router,
                ingress_class=cfg.controller.ingress_class,
            )
            controller.register()
            self._controller = controller
            await controller.sync_all()
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server.

        Non-fatal: tunnels keep being reconciled without the status API.
        """
        assert self._log is not None
        assert self.config is not None
        if not self.config.api.enabled:
            self._log.info("rest_api_disabled")
            return
        self._log.debug("starting_rest_api")
        try:
            import uvicorn

            from argotunnel.api import create_app

            fastapi_app = create_app(tunnel_router=self._router, informers=self._informers)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_api_started", port=self.config.api.port)
        except Exception as exc:
            self._log.warning("rest_api_failed_to_start", error=str(exc))
            self._rest_server = None

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order.

        Each component's stop is wrapped independently; a failure in one
        component's teardown does not prevent the others from stopping.
        """
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("argotunnel_shutting_down")
        self._running = False

        server = self._rest_server
        if server is not None:
            server.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        # Informers first so no new events reach the registry while it drains.
        await self._stop_component("informers", self._informers)
        await self._stop_component("router", self._router)
        self._controller = None
        self._informers = None
        self._router = None
        await self._stop_k8s_client()

        log.info("argotunnel_stopped")
        self._log = None

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s_client_close_failed", error=str(exc))
        self._api_client = None


def _argotunnel_version() -> str:
    from argotunnel import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = ArgoTunnelApp()
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal_startup_error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
