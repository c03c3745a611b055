"""Ingress → tunnel route translation.

The translator is a pure, synchronous function of one Ingress and the
current content of the informer stores.  It never calls the API server and
never mutates a store, so it may run for any number of Ingress objects
concurrently and yields equal routes for an unchanged snapshot.

A path only becomes a tunnel rule when all of the following resolve:

1. the backend Service exists in the Service store;
2. the backend port reference matches a declared Service port
   (by number for numeric references, by name for named ones);
3. an origin certificate is available: the Secret of the TLS entry that
   lists the rule host, else the configured default Secret, holding
   non-empty certificate bytes;
4. the Service's Endpoints list at least one ready address.

Any miss skips that path only; the rest of the Ingress is still translated.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from structlog.typing import FilteringBoundLogger

from argotunnel.collector.informer import InformerSet
from argotunnel.controller.annotations import parse_ingress_tunnel_options
from argotunnel.k8s import (
    backend_port_ref,
    backend_service_name,
    endpoints_have_subsets,
    get_service_port,
    object_name,
    object_namespace,
)
from argotunnel.models.resources import Resource, TunnelRoute, TunnelRule, item_key_func
from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import translations_total, translator_skipped_paths_total
from argotunnel.tunnel.options import DEFAULT_TUNNEL_OPTIONS, TunnelOptions, collect_tunnel_options

DEFAULT_SECRET_CERT_KEY = "cert.pem"


class SyncTranslator:
    """Derive the desired :class:`TunnelRoute` of an Ingress from cached state."""

    def __init__(
        self,
        informers: InformerSet,
        default_secret: Resource | None = None,
        secret_cert_key: str = DEFAULT_SECRET_CERT_KEY,
        base_options: TunnelOptions = DEFAULT_TUNNEL_OPTIONS,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        """Create a translator.

        Args:
            informers: Informers whose stores are read during translation.
            default_secret: Origin-certificate Secret used for hosts that no
                TLS entry covers.  Without it such hosts are not tunneled.
            secret_cert_key: Secret data key holding the certificate.
            base_options: Engine baseline filled in for absent annotations.
            log: Logger handle; defaults to a ``translator`` component logger.
        """
        self._informers = informers
        self._default_secret = default_secret
        self._secret_cert_key = secret_cert_key
        self._base_options = base_options
        self._log = log or get_logger("translator")

    def get_route_from_ingress(self, ing: Any) -> TunnelRoute | None:
        """Translate ``ing`` into its desired route.

        Returns:
            None for a None ingress; otherwise a route whose ``links`` map
            each eligible rule to ``None`` (possibly empty).
        """
        if ing is None:
            return None

        translations_total.inc()
        namespace = object_namespace(ing)
        name = object_name(ing)
        options = collect_tunnel_options(parse_ingress_tunnel_options(ing), base=self._base_options)
        route = TunnelRoute(name=name, namespace=namespace, options=options)

        spec = ing.spec
        if spec is None:
            return route

        host_secret: dict[str, Resource] = {}
        for tls in spec.tls or []:
            if not tls.secret_name:
                continue
            for host in tls.hosts or []:
                host_secret[host] = Resource(namespace=namespace, name=tls.secret_name)

        for rule in spec.rules or []:
            if rule.http is None or not rule.host:
                continue
            for path in rule.http.paths or []:
                resolved = self._resolve_path(namespace, name, rule.host, path, host_secret)
                if resolved is None:
                    continue
                tunnel_rule, cert = resolved
                route.links[tunnel_rule] = None
                route.certs[tunnel_rule] = cert

        self._log.debug(
            "ingress_translated",
            ingress=route.key,
            rules=len(route.links),
        )
        return route

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_path(
        self,
        namespace: str,
        ingress_name: str,
        host: str,
        path: Any,
        host_secret: dict[str, Resource],
    ) -> tuple[TunnelRule, bytes] | None:
        service_name = backend_service_name(path.backend)
        service_key = item_key_func(namespace, service_name)
        ctx = {"ingress": item_key_func(namespace, ingress_name), "host": host, "service": service_key}

        svc = self._informers.service.store.get_by_key(service_key) if service_name else None
        if svc is None:
            return self._skip("service_missing", ctx)

        port_ref = backend_port_ref(path.backend)
        port, ok = get_service_port(svc, port_ref)
        if not ok:
            return self._skip("port_missing", dict(ctx, port=port_ref))

        secret = host_secret.get(host, self._default_secret)
        if secret is None:
            return self._skip("tls_missing", ctx)

        sec = self._informers.secret.store.get_by_key(secret.key)
        if sec is None:
            return self._skip("secret_missing", dict(ctx, secret=secret.key))

        cert = self._extract_cert(sec)
        if not cert:
            return self._skip("cert_missing", dict(ctx, secret=secret.key, cert_key=self._secret_cert_key))

        ep = self._informers.endpoint.store.get_by_key(service_key)
        if not endpoints_have_subsets(ep):
            return self._skip("endpoints_unready", ctx)

        rule = TunnelRule(
            service=Resource(namespace=namespace, name=service_name),
            secret=secret,
            host=host,
            port=port,
        )
        return rule, cert

    def _extract_cert(self, sec: Any) -> bytes:
        data = getattr(sec, "data", None) or {}
        value = data.get(self._secret_cert_key)
        if not value:
            return b""
        if isinstance(value, bytes):
            return value
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return b""

    def _skip(self, reason: str, ctx: dict[str, Any]) -> None:
        translator_skipped_paths_total.labels(reason=reason).inc()
        self._log.debug("ingress_path_skipped", reason=reason, **ctx)
        return None
