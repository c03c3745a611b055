"""Self-healing tunnel links.

A link owns the lifecycle of exactly one tunnel.  While started it runs two
asyncio tasks that talk only through the link's private error queue and
events:

launch
    Awaits :meth:`TunnelEngine.run`.  Whatever the engine does (return or
    raise) is converted into one value on the error queue: ``None`` for a
    clean return, the exception otherwise.

repair
    Consumes the error queue.  For every failure it waits a jittered delay,
    then (unless the link was stopped meanwhile) closes the old run's stop
    event, rotates the client id and spawns a fresh launch task.  A clean
    return is not repaired.

``start()`` and ``stop()`` are idempotent.  Mutable link state is only
touched while holding the link's lock, and the lock is never held across an
engine call.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Coroutine
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from structlog.typing import FilteringBoundLogger

from argotunnel.models.resources import TunnelRule
from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import (
    link_failures_total,
    link_repair_delay_seconds,
    link_repairs_total,
    link_starts_total,
    link_stops_total,
    links_active,
)
from argotunnel.tunnel.config import TunnelConfig, new_link_tunnel_config, random_client_id
from argotunnel.tunnel.engine import TunnelEngine
from argotunnel.tunnel.options import TunnelOptions

DEFAULT_REPAIR_DELAY = timedelta(milliseconds=20)
DEFAULT_REPAIR_JITTER = 1.0

_ErrorQueue = asyncio.Queue[BaseException | None]


@runtime_checkable
class TunnelLink(Protocol):
    """The surface the route registry relies on."""

    @property
    def host(self) -> str: ...

    @property
    def rule(self) -> TunnelRule: ...

    @property
    def origin_url(self) -> str: ...

    @property
    def origin_cert(self) -> bytes: ...

    @property
    def options(self) -> TunnelOptions: ...

    def equal(self, other: TunnelLink) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def jitter(duration: float, max_factor: float) -> float:
    """Return a duration uniformly drawn from ``[duration, duration * (1 + max_factor))``.

    A non-positive ``max_factor`` is treated as 1.0.
    """
    if max_factor <= 0.0:
        max_factor = 1.0
    return duration + random.random() * max_factor * duration


class SyncTunnelLink:
    """Tunnel link backed by a :class:`TunnelEngine`.

    Usage::

        link = SyncTunnelLink(rule, cert, options, CloudflaredEngine())
        await link.start()
        ...
        await link.stop()
    """

    def __init__(
        self,
        rule: TunnelRule,
        cert: bytes,
        options: TunnelOptions,
        engine: TunnelEngine,
        log: FilteringBoundLogger | None = None,
        repair_delay: timedelta = DEFAULT_REPAIR_DELAY,
        repair_jitter: float = DEFAULT_REPAIR_JITTER,
    ) -> None:
        """Create a stopped link.

        Args:
            rule: The rule this link serves.
            cert: Origin certificate bytes.
            options: Tunnel options of the owning Ingress.
            engine: Engine used for every (re)launch.
            log: Logger handle; defaults to a ``link`` component logger.
            repair_delay: Base delay before relaunching a failed tunnel.
            repair_jitter: Maximum jitter factor applied to ``repair_delay``.
        """
        self._rule = rule
        self._options = options
        self._engine = engine
        self._config: TunnelConfig = new_link_tunnel_config(rule, cert, options)
        self._repair_delay = repair_delay.total_seconds()
        self._repair_jitter = repair_jitter
        self._log = (log or get_logger("link")).bind(hostname=rule.host, origin=self._config.origin_url)

        self._lock = asyncio.Lock()
        self._stop: asyncio.Event | None = None
        self._quit: asyncio.Event | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def host(self) -> str:
        return self._config.hostname

    @property
    def rule(self) -> TunnelRule:
        return self._rule

    @property
    def origin_url(self) -> str:
        return self._config.origin_url

    @property
    def origin_cert(self) -> bytes:
        return self._config.origin_cert

    @property
    def options(self) -> TunnelOptions:
        return self._options

    @property
    def client_id(self) -> str:
        return self._config.client_id

    @property
    def running(self) -> bool:
        return self._stop is not None

    def equal(self, other: TunnelLink) -> bool:
        """Return True if ``other`` would run the very same tunnel."""
        return (
            self.host == other.host
            and self.origin_url == other.origin_url
            and self.options == other.options
            and self.origin_cert == other.origin_cert
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._stop is not None:
            return
        async with self._lock:
            if self._stop is not None:
                return
            self._stop = asyncio.Event()
            self._quit = asyncio.Event()
            errors: _ErrorQueue = asyncio.Queue()
            self._spawn(self._repair(self._quit, errors), "repair")
            self._spawn(self._launch(self._stop, errors), "launch")
            link_starts_total.inc()
            links_active.inc()
        self._log.info("link_started", client_id=self._config.client_id)

    async def stop(self) -> None:
        if self._stop is None:
            return
        async with self._lock:
            if self._stop is None or self._quit is None:
                return
            self._quit.set()
            self._stop.set()
            self._stop = None
            self._quit = None
            link_stops_total.inc()
            links_active.dec()
        self._log.info("link_stopped")

    async def wait_closed(self) -> None:
        """Wait until every task spawned so far has finished."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], kind: str) -> None:
        task = asyncio.create_task(coro, name=f"link-{kind}-{self.host}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _launch(self, stop: asyncio.Event, errors: _ErrorQueue) -> None:
        err: BaseException | None = None
        try:
            await self._engine.run(self._config, stop, asyncio.Event())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            err = exc
            link_failures_total.labels(error_type=type(exc).__name__).inc()
        errors.put_nowait(err)

    async def _repair(self, quit_event: asyncio.Event, errors: _ErrorQueue) -> None:
        while True:
            err = await _first_of(errors.get(), quit_event)
            if quit_event.is_set():
                return
            if err is None:
                continue

            self._log.error(
                "link_failed",
                error=str(err),
                error_type=type(err).__name__,
            )
            delay = jitter(self._repair_delay, self._repair_jitter)
            link_repair_delay_seconds.observe(delay)
            try:
                await asyncio.wait_for(quit_event.wait(), timeout=delay)
            except TimeoutError:
                pass
            else:
                link_repairs_total.labels(outcome="aborted").inc()
                return

            async with self._lock:
                if self._quit is not quit_event or self._stop is None:
                    link_repairs_total.labels(outcome="aborted").inc()
                    return
                self._stop.set()
                self._config.client_id = random_client_id()
                self._stop = asyncio.Event()
                self._spawn(self._launch(self._stop, errors), "launch")
                link_repairs_total.labels(outcome="relaunched").inc()
            self._log.info("link_repaired", client_id=self._config.client_id, delay_s=round(delay, 4))


async def _first_of(
    getter: Awaitable[BaseException | None],
    quit_event: asyncio.Event,
) -> BaseException | None:
    """Await ``getter`` unless ``quit_event`` fires first."""
    get_task = asyncio.ensure_future(getter)
    quit_task = asyncio.ensure_future(quit_event.wait())
    try:
        await asyncio.wait({get_task, quit_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        quit_task.cancel()
        if not get_task.done():
            get_task.cancel()
    if get_task.done() and not get_task.cancelled():
        return get_task.result()
    return None
