"""Tunnel engines: the component that actually holds a tunnel open.

A link never talks to the edge itself.  It hands a :class:`TunnelConfig` to
a :class:`TunnelEngine` and treats the call as a black box that returns when
the tunnel is done and raises when it broke.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from datetime import timedelta
from typing import Protocol

from structlog.typing import FilteringBoundLogger

from argotunnel.observability.logging import get_logger
from argotunnel.tunnel.config import TunnelConfig

_DEFAULT_BINARY = "cloudflared"
_STOP_TIMEOUT_S: float = 10.0


class TunnelEngineError(Exception):
    """Raised when a tunnel engine run ends abnormally."""


class TunnelEngine(Protocol):
    async def run(self, config: TunnelConfig, stop: asyncio.Event, reconnect: asyncio.Event) -> None:
        """Run one tunnel until ``stop`` is set.

        Returns normally after a requested stop (or a clean engine exit) and
        raises on any failure, including a requested reconnect.
        """
        ...


def format_duration(value: timedelta) -> str:
    """Render ``value`` as a compact duration flag, e.g. ``"5s"`` or ``"250ms"``."""
    total_ms = round(value.total_seconds() * 1000)
    if total_ms % 1000 == 0:
        return f"{total_ms // 1000}s"
    return f"{total_ms}ms"


class CloudflaredEngine:
    """Run each tunnel as a ``cloudflared`` child process.

    The origin certificate is written to a private temporary file for the
    lifetime of the process.  Process output is forwarded line by line to
    the structured log at debug level.
    """

    def __init__(
        self,
        binary: str = _DEFAULT_BINARY,
        stop_timeout: float = _STOP_TIMEOUT_S,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._binary = binary
        self._stop_timeout = stop_timeout
        self._log = log or get_logger("engine.cloudflared")

    @property
    def binary(self) -> str:
        return self._binary

    def build_args(self, config: TunnelConfig, cert_path: str) -> list[str]:
        """Return the full command line for ``config``."""
        args = [
            self._binary,
            "tunnel",
            "--no-autoupdate",
            "--origincert",
            cert_path,
            "--hostname",
            config.hostname,
            "--url",
            config.origin_url,
            "--retries",
            str(config.retries),
            "--heartbeat-interval",
            format_duration(config.heartbeat_interval),
            "--heartbeat-count",
            str(config.heartbeat_count),
            "--ha-connections",
            str(config.ha_connections),
            "--compression-quality",
            str(config.compression_quality),
            "--grace-period",
            format_duration(config.grace_period),
        ]
        if config.lb_pool:
            args += ["--lb-pool", config.lb_pool]
        if config.no_chunked_encoding:
            args.append("--no-chunked-encoding")
        for name, value in sorted(config.tags.items()):
            args += ["--tag", f"{name}={value}"]
        args += ["--tag", f"client_id={config.client_id}"]
        return args

    async def run(self, config: TunnelConfig, stop: asyncio.Event, reconnect: asyncio.Event) -> None:
        if stop.is_set():
            return

        fd, cert_path = tempfile.mkstemp(prefix="argotunnel-", suffix=".pem")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(config.origin_cert)
            await self._run_process(config, cert_path, stop, reconnect)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(cert_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_process(
        self,
        config: TunnelConfig,
        cert_path: str,
        stop: asyncio.Event,
        reconnect: asyncio.Event,
    ) -> None:
        args = self.build_args(config, cert_path)
        self._log.info(
            "engine_process_starting",
            hostname=config.hostname,
            origin=config.origin_url,
            client_id=config.client_id,
        )
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        pump = asyncio.create_task(self._pump_output(process, config.hostname), name=f"engine-output-{config.hostname}")
        exited = asyncio.create_task(process.wait())
        stopped = asyncio.create_task(stop.wait())
        reconnecting = asyncio.create_task(reconnect.wait())
        try:
            await asyncio.wait({exited, stopped, reconnecting}, return_when=asyncio.FIRST_COMPLETED)
            if not exited.done():
                await self._terminate(process, config.hostname)
                if stop.is_set():
                    return
                raise TunnelEngineError(f"reconnect requested for {config.hostname}")

            code = exited.result()
            if code != 0 and not stop.is_set():
                raise TunnelEngineError(f"{self._binary} exited with code {code}")
            self._log.info("engine_process_exited", hostname=config.hostname, code=code)
        finally:
            for task in (exited, stopped, reconnecting):
                task.cancel()
            await asyncio.gather(exited, stopped, reconnecting, return_exceptions=True)
            if process.returncode is None:
                await self._terminate(process, config.hostname)
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    async def _terminate(self, process: asyncio.subprocess.Process, hostname: str) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
        except TimeoutError:
            self._log.warning("engine_process_kill", hostname=hostname, timeout_s=self._stop_timeout)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    async def _pump_output(self, process: asyncio.subprocess.Process, hostname: str) -> None:
        if process.stdout is None:
            return
        while True:
            line = await process.stdout.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._log.debug("engine_output", hostname=hostname, line=text)
