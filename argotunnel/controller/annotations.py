"""Ingress annotation parsing.

Tunnel options are configured per Ingress through annotations under the
``argo.cloudflare.com/`` prefix.  Every annotation is optional; a missing or
unparseable value is treated exactly like an absent one and is never logged,
since it is a user-facing misconfiguration rather than a controller fault.
"""

from __future__ import annotations

import math
import re
from datetime import timedelta
from typing import Any

from argotunnel.k8s import object_annotations

ANNOTATION_INGRESS_CLASS = "kubernetes.io/ingress.class"
ANNOTATION_COMPRESSION_QUALITY = "argo.cloudflare.com/compression-quality"
ANNOTATION_HA_CONNECTIONS = "argo.cloudflare.com/ha-connections"
ANNOTATION_HEARTBEAT_COUNT = "argo.cloudflare.com/heartbeat-count"
ANNOTATION_HEARTBEAT_INTERVAL = "argo.cloudflare.com/heartbeat-interval"
ANNOTATION_LB_POOL = "argo.cloudflare.com/lb-pool"
ANNOTATION_NO_CHUNKED_ENCODING = "argo.cloudflare.com/no-chunked-encoding"
ANNOTATION_RETRIES = "argo.cloudflare.com/retries"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_UINT32_MAX = 2**32 - 1
_UINT64_MAX = 2**64 - 1

_SIGNED_RE = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_RE = re.compile(r"[0-9]+")
_DURATION_PART_RE = re.compile(r"([0-9]*)(\.[0-9]*)?(ns|us|µs|μs|ms|s|m|h)")
# Largest magnitude a signed 64-bit nanosecond count can hold, in microseconds.
_DURATION_MAX_US = (2**63 - 1) / 1e3

# Duration units expressed in microseconds (timedelta resolution).
_DURATION_UNITS_US: dict[str, float] = {
    "ns": 1e-3,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1e3,
    "s": 1e6,
    "m": 60e6,
    "h": 3600e6,
}


def parse_ingress_tunnel_options(ing: Any) -> dict[str, object]:
    """Extract tunnel option overrides from an Ingress's annotations.

    Returns:
        A mapping of :class:`~argotunnel.tunnel.options.TunnelOptions` field
        names to parsed values; empty when no tunnel annotation is usable.
    """
    opts: dict[str, object] = {}
    if ing is None:
        return opts
    annotations = object_annotations(ing)

    if (u64 := parse_meta_uint64(annotations, ANNOTATION_COMPRESSION_QUALITY))[1]:
        opts["compression_quality"] = u64[0]
    if (i32 := parse_meta_int(annotations, ANNOTATION_HA_CONNECTIONS))[1]:
        opts["ha_connections"] = i32[0]
    if (u64 := parse_meta_uint64(annotations, ANNOTATION_HEARTBEAT_COUNT))[1]:
        opts["heartbeat_count"] = u64[0]
    if (dur := parse_meta_duration(annotations, ANNOTATION_HEARTBEAT_INTERVAL))[1]:
        opts["heartbeat_interval"] = dur[0]
    if ANNOTATION_LB_POOL in annotations:
        opts["lb_pool"] = annotations[ANNOTATION_LB_POOL]
    if (flag := parse_meta_bool(annotations, ANNOTATION_NO_CHUNKED_ENCODING))[1]:
        opts["no_chunked_encoding"] = flag[0]
    if (u32 := parse_meta_uint(annotations, ANNOTATION_RETRIES))[1]:
        opts["retries"] = u32[0]
    return opts


def parse_ingress_class(ing: Any) -> tuple[str, bool]:
    """Return the ingress class claimed by ``ing``.

    The legacy annotation wins over ``spec.ingressClassName``.
    """
    if ing is None:
        return "", False
    annotations = object_annotations(ing)
    if ANNOTATION_INGRESS_CLASS in annotations:
        return annotations[ANNOTATION_INGRESS_CLASS], True
    spec = getattr(ing, "spec", None)
    class_name = getattr(spec, "ingress_class_name", None) if spec is not None else None
    if class_name:
        return str(class_name), True
    return "", False


# ---------------------------------------------------------------------------
# Typed annotation readers: each returns (value, ok)
# ---------------------------------------------------------------------------


def parse_meta_bool(annotations: dict[str, str], key: str) -> tuple[bool, bool]:
    """Only the literals ``"true"`` and ``"false"`` count as present."""
    value = annotations.get(key)
    if value == "true":
        return True, True
    if value == "false":
        return False, True
    return False, False


def parse_meta_duration(annotations: dict[str, str], key: str) -> tuple[timedelta, bool]:
    value = annotations.get(key)
    if value is None:
        return timedelta(0), False
    try:
        return parse_duration(value), True
    except ValueError:
        return timedelta(0), False


def parse_meta_int(annotations: dict[str, str], key: str) -> tuple[int, bool]:
    """Parse a signed 32-bit decimal integer."""
    return _parse_integer(annotations.get(key), _SIGNED_RE, _INT32_MIN, _INT32_MAX)


def parse_meta_uint(annotations: dict[str, str], key: str) -> tuple[int, bool]:
    """Parse an unsigned 32-bit decimal integer."""
    return _parse_integer(annotations.get(key), _UNSIGNED_RE, 0, _UINT32_MAX)


def parse_meta_uint64(annotations: dict[str, str], key: str) -> tuple[int, bool]:
    """Parse an unsigned 64-bit decimal integer."""
    return _parse_integer(annotations.get(key), _UNSIGNED_RE, 0, _UINT64_MAX)


def _parse_integer(value: str | None, pattern: re.Pattern[str], low: int, high: int) -> tuple[int, bool]:
    if value is None or pattern.fullmatch(value) is None:
        return 0, False
    parsed = int(value)
    if parsed < low or parsed > high:
        return 0, False
    return parsed, True


def parse_duration(value: str) -> timedelta:
    """Parse a compact duration string such as ``"300ms"``, ``"-1.5h"`` or ``"2h45m"``.

    Valid units are ``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m``, ``h``.
    A bare ``"0"`` is accepted; any other unit-less number is rejected.

    Raises:
        ValueError: if ``value`` is not a valid duration string.
    """
    s = value
    negative = False
    if s[:1] in ("+", "-"):
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError(f"invalid duration {value!r}")

    total_us = 0.0
    pos = 0
    while pos < len(s):
        match = _DURATION_PART_RE.match(s, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        whole, frac, unit = match.groups()
        if not whole and (frac is None or len(frac) < 2):
            raise ValueError(f"invalid duration {value!r}")
        number = float((whole or "0") + (frac if frac and len(frac) > 1 else ""))
        total_us += number * _DURATION_UNITS_US[unit]
        pos = match.end()

    if not math.isfinite(total_us) or total_us > _DURATION_MAX_US:
        raise ValueError(f"invalid duration {value!r}: out of range")
    delta = timedelta(microseconds=total_us)
    return -delta if negative else delta
