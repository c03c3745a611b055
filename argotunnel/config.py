"""Environment-driven configuration loading.

Every setting is read from an ``ARGOTUNNEL_*`` environment variable.  Numeric
settings are clamped into their valid range; malformed numbers fall back to
the default.  Invalid log levels, log formats and default-secret references
raise ``ValueError`` so the process refuses to start with them.
"""

from __future__ import annotations

import os

from argotunnel.models.config import ApiConfig, ArgoTunnelConfig, ControllerConfig, EngineConfig, LogConfig
from argotunnel.models.resources import Resource

_PREFIX = "ARGOTUNNEL_"

_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error", "critical"})
_VALID_LOG_FORMATS: frozenset[str] = frozenset({"json", "console"})
_TRUTHY: frozenset[str] = frozenset({"true", "1", "yes", "on"})


def _env(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, low: int, high: int) -> int:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return max(low, min(high, value))


def parse_default_secret(value: str) -> Resource | None:
    """Parse the configured default secret reference.

    Returns:
        None for an empty value.

    Raises:
        ValueError: if ``value`` is not ``namespace/name`` with both parts set.
    """
    if not value:
        return None
    try:
        secret = Resource.from_key(value)
    except ValueError:
        secret = None
    if secret is None or not secret.namespace or not secret.name:
        raise ValueError(f"Invalid default secret {value!r}: expected namespace/name")
    return secret


def load_config() -> ArgoTunnelConfig:
    """Build an :class:`ArgoTunnelConfig` from the process environment."""
    level = _env("LOG_LEVEL", "info").strip().lower()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level {level!r}: must be one of {sorted(_VALID_LOG_LEVELS)}")
    fmt = _env("LOG_FORMAT", "json").strip().lower()
    if fmt not in _VALID_LOG_FORMATS:
        raise ValueError(f"Invalid log format {fmt!r}: must be one of {sorted(_VALID_LOG_FORMATS)}")

    default_secret = _env("DEFAULT_SECRET", "").strip()
    parse_default_secret(default_secret)

    return ArgoTunnelConfig(
        log=LogConfig(level=level, format=fmt),
        api=ApiConfig(
            port=_env_int("API_PORT", 8080, 1024, 65535),
            enabled=_env_bool("API_ENABLED", True),
        ),
        controller=ControllerConfig(
            ingress_class=_env("INGRESS_CLASS", "argo-tunnel").strip(),
            default_secret=default_secret,
            secret_cert_key=_env("SECRET_CERT_KEY", "cert.pem").strip(),
            resync_period_seconds=_env_int("RESYNC_PERIOD", 0, 0, 86400),
            cache_sync_timeout_seconds=_env_int("CACHE_SYNC_TIMEOUT", 60, 5, 600),
        ),
        engine=EngineConfig(
            binary=_env("ENGINE_BINARY", "cloudflared").strip(),
            repair_delay_ms=_env_int("REPAIR_DELAY_MS", 20, 1, 60000),
        ),
    )
