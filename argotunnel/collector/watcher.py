"""List+watch loop shared by every informer.

A watcher first lists its resource kind to build a snapshot, then follows a
watch stream from the snapshot's resourceVersion.  Failures are absorbed
here so informers only ever see a consistent sequence of listings and events:

- 410 Gone drops the resourceVersion and forces a fresh listing
- 429 and 5xx back off exponentially, 1 s doubling up to 60 s
- three consecutive failures of any kind force a fresh listing
- a listing must finish within 30 s, otherwise it is retried after back-off
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import (
    watcher_backoff_seconds,
    watcher_errors_total,
    watcher_events_total,
    watcher_reconnects_total,
    watcher_relist_timeout_total,
    watcher_relistings_total,
)

FAILURES_BEFORE_RELIST: int = 3
LIST_TIMEOUT_S: float = 30.0

_SERVER_ERRORS: frozenset[int] = frozenset({500, 503, 504})


@dataclass
class Backoff:
    """Exponential delay that grows on every use and resets on success."""

    minimum: float = 1.0
    maximum: float = 60.0
    factor: float = 2.0
    current: float = 1.0

    def next_delay(self) -> float:
        delay = min(self.current, self.maximum)
        self.current = min(self.current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self.current = self.minimum


class BaseWatcher(ABC):
    """Keeps one resource kind flowing from the API server into a subclass.

    Subclasses say which list call to use (:meth:`_list_func`), how to adopt
    a full listing (:meth:`_replace`) and how to apply a single event
    (:meth:`_handle_event`).  :meth:`start` runs the loop as a task and
    :meth:`stop` cancels it.
    """

    def __init__(self, api: Any, name: str = "base") -> None:
        self._api = api
        self._name = name
        self._log = get_logger(f"watcher.{name}")

        self._running = False
        self._task: asyncio.Task[None] | None = None

        # Empty until the first listing completes.
        self._resource_version = ""
        self._needs_relist = True
        self._failures = 0
        self._delay = Backoff()

    @property
    def name(self) -> str:
        return self._name

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"watcher-{self._name}")
        self._log.info("watcher_started", watcher=self._name)

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._log.info("watcher_stopped", watcher=self._name)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        """The all-namespaces list call, used both for listing and watching."""

    @abstractmethod
    async def _replace(self, items: list[Any]) -> None:
        """Adopt ``items`` as the complete current state."""

    @abstractmethod
    async def _handle_event(self, event_type: str, obj: Any, raw: dict[str, Any]) -> None:
        """Apply one ADDED, MODIFIED or DELETED event."""

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        while self._running:
            try:
                if self._needs_relist:
                    await self._list(reason="recovery" if self._resource_version else "initial")
                else:
                    await self._follow()
            except asyncio.CancelledError:
                return
            except ApiException as exc:
                await self._on_api_error(exc)
            except Exception as exc:
                if not self._running:
                    return
                await self._on_unexpected_error(exc)

    async def _follow(self) -> None:
        """Consume one watch stream until the server closes it."""
        kwargs: dict[str, Any] = {"allow_watch_bookmarks": True}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        stream = watch.Watch()
        try:
            async for event in stream.stream(self._list_func(), **kwargs):
                if not self._running:
                    return
                await self._consume(event)
        finally:
            await stream.close()

        # The server ends idle watches on its own timeout.
        self._log.debug("watch_stream_ended", watcher=self._name, failures=self._failures + 1)
        await self._record_failure("stream_end")

    async def _consume(self, event: dict[str, Any]) -> None:
        event_type: str = event.get("type", "")
        raw = event.get("raw_object")
        if not isinstance(raw, dict):
            raw = {}

        if event_type == "BOOKMARK":
            self._resource_version = _bookmark_rv(raw) or self._resource_version
            return

        obj = event.get("object")
        self._resource_version = _object_rv(obj, raw) or self._resource_version
        watcher_events_total.labels(watcher=self._name, event_type=event_type).inc()
        await self._handle_event(event_type, obj, raw)
        self._succeeded()

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _on_api_error(self, exc: ApiException) -> None:
        status = exc.status
        watcher_errors_total.labels(watcher=self._name, status_code=str(status)).inc()

        if status == 410:
            self._log.warning("watch_expired", watcher=self._name)
            watcher_reconnects_total.labels(watcher=self._name, reason="410").inc()
            self._resource_version = ""
            self._needs_relist = True
            return

        if status == 429:
            self._log.warning("watch_throttled", watcher=self._name)
            watcher_reconnects_total.labels(watcher=self._name, reason="429").inc()
            await self._pause("429")
            return

        if status in _SERVER_ERRORS:
            self._log.warning("watch_server_error", watcher=self._name, status=status)
            watcher_reconnects_total.labels(watcher=self._name, reason=str(status)).inc()
            await self._record_failure(str(status), always_pause=True)
            return

        self._log.error("watch_api_error", watcher=self._name, status=status, reason=exc.reason)
        await self._record_failure("api_error", always_pause=True)

    async def _on_unexpected_error(self, exc: Exception) -> None:
        self._log.error("watch_unexpected_error", watcher=self._name, error=str(exc), exc_info=True)
        watcher_reconnects_total.labels(watcher=self._name, reason="unexpected").inc()
        await self._record_failure("unexpected", always_pause=True)

    async def _record_failure(self, reason: str, always_pause: bool = False) -> None:
        """Count a failure; past the threshold the next iteration relists."""
        self._failures += 1
        if self._failures >= FAILURES_BEFORE_RELIST:
            self._needs_relist = True
            if not always_pause:
                return
        await self._pause(reason)

    async def _pause(self, reason: str) -> None:
        delay = self._delay.next_delay()
        self._log.debug("watcher_backoff", watcher=self._name, reason=reason, delay_s=delay)
        watcher_backoff_seconds.labels(watcher=self._name).observe(delay)
        await asyncio.sleep(delay)

    def _succeeded(self) -> None:
        self._delay.reset()
        self._failures = 0

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def _list(self, reason: str) -> None:
        """Take a fresh snapshot, bounded by :data:`LIST_TIMEOUT_S`.

        A failed or timed-out listing leaves the relist flag set, so the loop
        tries again after backing off.
        """
        watcher_relistings_total.labels(watcher=self._name).inc()
        self._log.info("relist_start", watcher=self._name, reason=reason)
        try:
            async with asyncio.timeout(LIST_TIMEOUT_S):
                await self._list_and_replace()
        except TimeoutError:
            self._log.warning("relist_timeout", watcher=self._name, reason=reason)
            watcher_relist_timeout_total.labels(watcher=self._name).inc()
            await self._pause("relist_timeout")
            return
        except ApiException as exc:
            watcher_errors_total.labels(watcher=self._name, status_code=str(exc.status)).inc()
            self._log.error("relist_failed", watcher=self._name, reason=reason, status=exc.status)
            await self._pause("relist_failed")
            return

        self._needs_relist = False
        self._succeeded()

    async def _list_and_replace(self) -> None:
        self._resource_version = ""
        result = await self._list_func()(_preload_content=True, watch=False)
        items = list(getattr(result, "items", None) or [])
        metadata = getattr(result, "metadata", None)
        rv = (getattr(metadata, "resource_version", "") or "") if metadata is not None else ""

        await self._replace(items)

        self._resource_version = rv
        if rv:
            self._log.info("relist_complete", watcher=self._name, count=len(items), resource_version=rv)
        else:
            self._log.warning("relist_no_rv", watcher=self._name, count=len(items))


# ---------------------------------------------------------------------------
# resourceVersion extraction
# ---------------------------------------------------------------------------


def _object_rv(obj: Any, raw: dict[str, Any]) -> str:
    """resourceVersion of an event, from the typed object or else the raw dict."""
    metadata = getattr(obj, "metadata", None)
    rv = getattr(metadata, "resource_version", None) if metadata is not None else None
    if rv:
        return str(rv)
    return _bookmark_rv(raw)


def _bookmark_rv(raw: dict[str, Any]) -> str:
    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        return ""
    return str(metadata.get("resourceVersion", "") or "")
