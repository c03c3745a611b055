"""Prometheus metrics for argotunnel."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Watcher metrics
watcher_events_total = Counter(
    "argotunnel_watcher_events_total",
    "Total watch events received",
    ["watcher", "event_type"],
)

watcher_errors_total = Counter(
    "argotunnel_watcher_errors_total",
    "Total watch API errors",
    ["watcher", "status_code"],
)

watcher_reconnects_total = Counter(
    "argotunnel_watcher_reconnects_total",
    "Total watch reconnects",
    ["watcher", "reason"],
)

watcher_relistings_total = Counter(
    "argotunnel_watcher_relistings_total",
    "Total watcher relists",
    ["watcher"],
)

watcher_relist_timeout_total = Counter(
    "argotunnel_watcher_relist_timeout_total",
    "Total watcher relists that exceeded their time budget",
    ["watcher"],
)

watcher_backoff_seconds = Histogram(
    "argotunnel_watcher_backoff_seconds",
    "Watcher back-off delays in seconds",
    ["watcher"],
    buckets=(1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0),
)

# Store metrics
store_objects = Gauge(
    "argotunnel_store_objects",
    "Number of objects held by an indexed store",
    ["kind"],
)

store_synced = Gauge(
    "argotunnel_store_synced",
    "Whether the initial list of a store has completed (0 or 1)",
    ["kind"],
)

index_errors_total = Counter(
    "argotunnel_index_errors_total",
    "Total objects rejected by an index function",
    ["kind", "index"],
)

# Translator metrics
translations_total = Counter(
    "argotunnel_translations_total",
    "Total ingress translations",
)

translator_skipped_paths_total = Counter(
    "argotunnel_translator_skipped_paths_total",
    "Total ingress paths skipped during translation",
    ["reason"],
)

# Route registry metrics
routes_active = Gauge(
    "argotunnel_routes_active",
    "Number of ingress routes held by the registry",
)

links_active = Gauge(
    "argotunnel_links_active",
    "Number of tunnel links currently started",
)

# Tunnel link metrics
link_starts_total = Counter(
    "argotunnel_link_starts_total",
    "Total tunnel link starts",
)

link_stops_total = Counter(
    "argotunnel_link_stops_total",
    "Total tunnel link stops",
)

link_failures_total = Counter(
    "argotunnel_link_failures_total",
    "Total tunnel engine failures observed by links",
    ["error_type"],
)

link_repairs_total = Counter(
    "argotunnel_link_repairs_total",
    "Total tunnel link repair outcomes",
    ["outcome"],
)

link_repair_delay_seconds = Histogram(
    "argotunnel_link_repair_delay_seconds",
    "Jittered delay applied before a link relaunch",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)
